from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from inference.backend import BackendNegotiator
from inference.loader import ModelLoader
from inference.reclaimer import ResourceReclaimer
from models.config import Config
from models.state import BackendState, LoadProgress, ModelHandle


@dataclass
class RuntimeContext:
    """
    Holds the shared state of a running detector; avoids global singletons.

    Written only during startup (negotiator/loader), read by every cycle.
    """

    config: Config
    backend: BackendState
    model: ModelHandle
    reclaimer: ResourceReclaimer
    progress: LoadProgress = field(default_factory=LoadProgress.done)

    def describe(self) -> dict:
        return {
            "backend": self.backend.kind.value,
            "providers": list(self.backend.providers),
            "model": self.model.uri,
            "input_shape": list(self.model.input_shape),
            "classes": len(self.model.class_names),
            "live_buffers": self.reclaimer.live_buffers,
        }


async def create_runtime(
    config: Config,
    on_progress: Optional[Callable[[LoadProgress], None]] = None,
    runtime: Any = None,
) -> RuntimeContext:
    """
    Negotiate the backend and load the configured model.

    Raises:
        ModelLoadError: If the model cannot be loaded on any backend.
    """
    latest = {"progress": LoadProgress(is_loading=True, fraction=0.0)}

    def track(progress: LoadProgress) -> None:
        latest["progress"] = progress
        if on_progress is not None:
            on_progress(progress)

    negotiator = BackendNegotiator(config.backend, runtime=runtime)
    negotiator.select_backend()

    reclaimer = ResourceReclaimer()
    loader = ModelLoader(negotiator, config.model, reclaimer=reclaimer)
    model = await loader.load_model(config.model.uri, on_progress=track)

    ctx = RuntimeContext(
        config=config,
        backend=loader.backend_state,
        model=model,
        reclaimer=reclaimer,
        progress=latest["progress"],
    )
    logging.info(f"Runtime ready: {ctx.describe()}")
    return ctx
