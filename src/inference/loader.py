"""
Asynchronous model loading.

Fetches the ONNX artifact, creates an inference session under the negotiated
backend (falling back a tier when the session cannot be created), discovers
input/output shapes and class names, and pays the one-time kernel setup cost
with a single warm-up inference before the handle is handed out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import yaml

from models.config import ModelConfig
from models.state import BackendKind, BackendState, LoadProgress, ModelHandle
from .backend import BackendNegotiator
from .errors import BackendUnavailableError, ModelLoadError
from .fetch import fetch_model
from .reclaimer import ResourceReclaimer

ProgressObserver = Callable[[LoadProgress], None]

# Share of the progress bar covered by the download; the rest is session
# creation and warm-up.
FETCH_SHARE = 0.9
SESSION_FRACTION = 0.95
LOADING_CAP = 0.99


class ProgressTracker:
    """
    Delivers LoadProgress updates to an observer.

    Fractions never go backwards, stay below 1.0 while loading, and the
    terminal LoadProgress(False, 1.0) is delivered exactly once.
    """

    def __init__(self, observer: Optional[ProgressObserver] = None):
        self._observer = observer
        self._fraction = 0.0
        self._started = False
        self._finished = False

    @property
    def current(self) -> LoadProgress:
        if self._finished:
            return LoadProgress.done()
        return LoadProgress(is_loading=True, fraction=self._fraction)

    def update(self, fraction: float) -> None:
        if self._finished:
            return
        fraction = min(max(float(fraction), self._fraction), LOADING_CAP)
        if self._started and fraction == self._fraction:
            return
        self._started = True
        self._fraction = fraction
        self._emit(LoadProgress(is_loading=True, fraction=fraction))

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._fraction = 1.0
        self._emit(LoadProgress.done())

    def _emit(self, progress: LoadProgress) -> None:
        if self._observer is None:
            return
        try:
            self._observer(progress)
        except Exception as e:
            logging.warning(f"Progress observer error: {e}")


def resolve_input_shape(
    declared: Sequence[Any],
    input_size: Sequence[int] = (640, 640),
) -> Tuple[Tuple[int, int, int, int], str]:
    """
    Turn a declared (possibly symbolic) input shape into a concrete one.

    Args:
        declared: Shape from the session, dims may be str/None when dynamic.
        input_size: [width, height] used for dynamic spatial dims.

    Returns:
        (shape, layout) with batch fixed to 1.
    """
    if len(declared) != 4:
        raise ModelLoadError(f"Expected a 4-d image input, got shape {list(declared)}")

    dims = [d if isinstance(d, int) and d > 0 else None for d in declared]
    if dims[0] not in (None, 1):
        raise ModelLoadError(f"Fixed batch size {dims[0]} is not supported")

    layout = "NHWC" if dims[3] in (1, 3, 4) and dims[1] not in (1, 3, 4) else "NCHW"
    default_w, default_h = int(input_size[0]), int(input_size[1])
    if layout == "NCHW":
        c, h, w = dims[1], dims[2], dims[3]
        return (1, c or 3, h or default_h, w or default_w), layout
    h, w, c = dims[1], dims[2], dims[3]
    return (1, h or default_h, w or default_w, c or 3), layout


def read_class_names(session: Any) -> Dict[int, str]:
    """Class names from the `names` metadata entry written by YOLO exporters."""
    get_meta = getattr(session, "get_modelmeta", None)
    if get_meta is None:
        return {}
    meta = getattr(get_meta(), "custom_metadata_map", None) or {}
    raw = meta.get("names")
    if not raw:
        return {}

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logging.warning(f"Could not parse class names metadata: {e}")
        return {}

    if isinstance(parsed, dict):
        return {int(k): str(v) for k, v in parsed.items()}
    if isinstance(parsed, list):
        return {i: str(v) for i, v in enumerate(parsed)}
    return {}


class ModelLoader:
    """
    Loads a detection network under a negotiated backend.

    Example:
        loader = ModelLoader(BackendNegotiator(cfg.backend), cfg.model)
        model = await loader.load_model("models/yolo11s.onnx", on_progress=print)
    """

    def __init__(
        self,
        negotiator: BackendNegotiator,
        config: Optional[ModelConfig] = None,
        reclaimer: Optional[ResourceReclaimer] = None,
    ):
        self.negotiator = negotiator
        self.config = config or ModelConfig()
        self.reclaimer = reclaimer or ResourceReclaimer()
        self.backend_state: Optional[BackendState] = None

    async def load_model(
        self,
        uri: Optional[str] = None,
        on_progress: Optional[ProgressObserver] = None,
    ) -> ModelHandle:
        """
        Fetch, open and warm up the model at `uri`.

        Raises:
            ModelLoadError: Fetch failure, malformed artifact or failed warm-up.
        """
        uri = uri or self.config.uri
        if not uri:
            raise ModelLoadError("No model URI configured")

        tracker = ProgressTracker(on_progress)
        tracker.update(0.0)
        loop = asyncio.get_running_loop()

        def report_fetch(fraction: float) -> None:
            loop.call_soon_threadsafe(tracker.update, fraction * FETCH_SHARE)

        logging.info(f"Loading model: {uri}")
        t0 = time.perf_counter()
        payload = await asyncio.to_thread(
            fetch_model, uri, self.config.chunk_size, self.config.request_timeout, report_fetch
        )
        tracker.update(FETCH_SHARE)

        session = await self._create_session(payload)
        tracker.update(SESSION_FRACTION)

        handle = self._describe(session, uri)
        await asyncio.to_thread(self.warm_up, handle)

        tracker.finish()
        logging.info(
            f"Model ready: input={handle.input_shape} layout={handle.layout} "
            f"classes={len(handle.class_names)} backend={self.backend_state.kind.value} "
            f"in {time.perf_counter() - t0:.2f}s"
        )
        return handle

    def warm_up(self, handle: ModelHandle) -> None:
        """Run exactly one throwaway inference on an all-ones input."""
        t0 = time.perf_counter()
        with self.reclaimer.cycle("warmup") as arena:
            dummy = arena.ones(handle.input_shape, dtype=np.float32)
            try:
                outputs = handle.session.run(None, {handle.input_name: dummy})
            except Exception as e:
                raise ModelLoadError(f"Warm-up inference failed: {e}") from e
            arena.track_all([np.asarray(o) for o in outputs])
        logging.info(f"Warm-up inference took {(time.perf_counter() - t0) * 1000:.1f} ms")

    async def _create_session(self, payload: bytes) -> Any:
        state = self.negotiator.select_backend()
        while True:
            try:
                session = await asyncio.to_thread(self._new_session, payload, state)
                self.backend_state = state
                return session
            except Exception as e:
                error = e

            if state.kind == BackendKind.CPU:
                raise ModelLoadError(f"Failed to create inference session: {error}") from error

            logging.warning(f"Session creation failed under {state.kind.value} backend: {error}")
            try:
                state = self.negotiator.fall_back(state)
            except BackendUnavailableError as e:
                raise ModelLoadError(f"No backend could load the model: {error}") from e

    def _new_session(self, payload: bytes, state: BackendState) -> Any:
        runtime = self.negotiator.runtime
        session = runtime.InferenceSession(
            payload,
            sess_options=self.negotiator.session_options(),
            providers=list(state.providers),
            provider_options=state.provider_options(),
        )
        # onnxruntime silently drops a GPU provider whose libraries fail to load
        active = list(session.get_providers())
        if state.is_gpu and (not active or active[0] != state.provider):
            raise BackendUnavailableError(f"{state.provider} failed to initialise, session uses {active}")
        return session

    def _describe(self, session: Any, uri: str) -> ModelHandle:
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ModelLoadError("Model must declare at least one input and one output")

        shape, layout = resolve_input_shape(inputs[0].shape, self.config.input_size)
        class_names = dict(self.config.class_names) if self.config.class_names else read_class_names(session)

        return ModelHandle(
            session=session,
            input_name=inputs[0].name,
            input_shape=shape,
            layout=layout,
            output_names=tuple(o.name for o in outputs),
            output_shapes=tuple(tuple(o.shape) for o in outputs),
            class_names=class_names,
            uri=uri,
        )
