"""
Compute backend negotiation.

Backends map to onnxruntime execution providers, tried in priority order:
primary GPU, secondary GPU, then CPU as the terminal fallback offered by the
runtime. The result is an explicit BackendState handed to the model loader
rather than a process-wide setting.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Set

import onnxruntime as ort

from models.config import BackendConfig
from models.state import BackendKind, BackendState
from .errors import BackendUnavailableError

CPU_PROVIDER = "CPUExecutionProvider"

BACKEND_ORDER = (BackendKind.PRIMARY_GPU, BackendKind.SECONDARY_GPU, BackendKind.CPU)

GRAPH_OPTIMIZATION_LEVELS = {
    "disable": "ORT_DISABLE_ALL",
    "basic": "ORT_ENABLE_BASIC",
    "extended": "ORT_ENABLE_EXTENDED",
    "all": "ORT_ENABLE_ALL",
}


class BackendNegotiator:
    """
    Picks the best available execution provider once and owns fallback.

    Example:
        negotiator = BackendNegotiator(BackendConfig())
        state = negotiator.select_backend()
        # later, if a session fails to initialise under state:
        state = negotiator.fall_back(state)
    """

    def __init__(self, config: Optional[BackendConfig] = None, runtime: Any = None):
        self.config = config or BackendConfig()
        self.runtime = runtime if runtime is not None else ort
        self._state: Optional[BackendState] = None

    @property
    def state(self) -> Optional[BackendState]:
        return self._state

    def available_providers(self) -> Set[str]:
        return set(self.runtime.get_available_providers())

    def select_backend(self) -> BackendState:
        """Negotiate the backend. Later calls return the state already chosen."""
        if self._state is not None:
            return self._state

        available = self.available_providers()
        logging.info(f"Available execution providers: {sorted(available)}")
        self._state = self._negotiate(available, BackendKind.PRIMARY_GPU)
        logging.info(
            f"Backend selected: {self._state.kind.value} providers={list(self._state.providers)} "
            f"tuning={dict(self._state.tuning)}"
        )
        return self._state

    def fall_back(self, state: BackendState) -> BackendState:
        """
        Move one tier down from `state`, e.g. after session creation failed.

        Raises:
            BackendUnavailableError: If `state` is already the CPU backend.
        """
        idx = BACKEND_ORDER.index(state.kind)
        if idx + 1 >= len(BACKEND_ORDER):
            raise BackendUnavailableError("No backend left to fall back to after CPU")

        self._state = self._negotiate(self.available_providers(), BACKEND_ORDER[idx + 1])
        logging.warning(
            f"Backend fallback: {state.kind.value} -> {self._state.kind.value} "
            f"providers={list(self._state.providers)}"
        )
        return self._state

    def session_options(self) -> Any:
        """Build onnxruntime SessionOptions from config."""
        opts = self.runtime.SessionOptions()
        level = GRAPH_OPTIMIZATION_LEVELS.get(str(self.config.graph_optimization).lower(), "ORT_ENABLE_ALL")
        opts.graph_optimization_level = getattr(self.runtime.GraphOptimizationLevel, level)
        opts.intra_op_num_threads = int(self.config.intra_op_threads)
        return opts

    def _negotiate(self, available: Set[str], start: BackendKind) -> BackendState:
        for kind in BACKEND_ORDER[BACKEND_ORDER.index(start):]:
            try:
                return self._initialize(kind, available)
            except BackendUnavailableError as e:
                logging.warning(f"{e}; trying next backend")
        raise BackendUnavailableError(f"No usable backend among {sorted(available)}")

    def _initialize(self, kind: BackendKind, available: Set[str]) -> BackendState:
        wanted = self._tier_providers(kind)
        chosen = [p for p in wanted if p in available]
        if not chosen:
            raise BackendUnavailableError(f"{kind.value} backend unavailable (wanted {wanted})")

        if kind == BackendKind.CPU:
            return BackendState(kind=kind, providers=(CPU_PROVIDER,))

        # CPU stays last so nodes the GPU provider cannot place still run.
        providers = (chosen[0], CPU_PROVIDER) if CPU_PROVIDER in available else (chosen[0],)
        tuning = dict(self.config.tuning) if kind == BackendKind.PRIMARY_GPU else {}
        return BackendState(kind=kind, providers=providers, tuning=tuning)

    def _tier_providers(self, kind: BackendKind) -> List[str]:
        if kind == BackendKind.PRIMARY_GPU:
            return list(self.config.primary_providers)
        if kind == BackendKind.SECONDARY_GPU:
            return list(self.config.secondary_providers)
        return [CPU_PROVIDER]


def describe_providers(providers: Iterable[str]) -> str:
    return ", ".join(p.replace("ExecutionProvider", "") for p in providers)
