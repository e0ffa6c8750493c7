"""
Shared runtime state: backend selection, loaded model and load progress.

All three are written by a single owner (negotiator or loader) and read by
every pipeline cycle, so they are frozen and replaced rather than mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class BackendKind(str, Enum):
    PRIMARY_GPU = "primary_gpu"
    SECONDARY_GPU = "secondary_gpu"
    CPU = "cpu"


@dataclass(frozen=True)
class BackendState:
    """
    Result of backend negotiation.

    Attributes:
        kind: Which tier of the priority list is active.
        providers: Ordered onnxruntime execution providers for new sessions.
        tuning: Provider options applied to the first provider. Empty unless
            the primary backend is active.
    """
    kind: BackendKind
    providers: Tuple[str, ...]
    tuning: Mapping[str, Any] = field(default_factory=dict)

    @property
    def provider(self) -> str:
        return self.providers[0]

    @property
    def is_gpu(self) -> bool:
        return self.kind != BackendKind.CPU

    def provider_options(self) -> list:
        """Options list aligned with `providers` (onnxruntime wants equal lengths)."""
        opts = [dict(self.tuning)] if self.tuning else [{}]
        return opts + [{} for _ in self.providers[1:]]


@dataclass(frozen=True)
class ModelHandle:
    """
    A loaded, warmed-up detection network.

    Attributes:
        session: onnxruntime InferenceSession (or compatible object).
        input_name: Name of the single image input.
        input_shape: Concrete input shape, batch first.
        layout: "NCHW" or "NHWC".
        output_names: Output tensor names, first one holds detections.
        output_shapes: Declared output shapes (may contain symbolic dims).
        class_names: Class id to label.
        uri: Where the artifact was loaded from.
    """
    session: Any
    input_name: str
    input_shape: Tuple[int, int, int, int]
    layout: str = "NCHW"
    output_names: Tuple[str, ...] = ()
    output_shapes: Tuple[tuple, ...] = ()
    class_names: Mapping[int, str] = field(default_factory=dict)
    uri: Optional[str] = None

    @property
    def height(self) -> int:
        return self.input_shape[2] if self.layout == "NCHW" else self.input_shape[1]

    @property
    def width(self) -> int:
        return self.input_shape[3] if self.layout == "NCHW" else self.input_shape[2]

    @property
    def channels(self) -> int:
        return self.input_shape[1] if self.layout == "NCHW" else self.input_shape[3]


@dataclass(frozen=True)
class LoadProgress:
    is_loading: bool
    fraction: float

    @classmethod
    def done(cls) -> "LoadProgress":
        return cls(is_loading=False, fraction=1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {"is_loading": self.is_loading, "fraction": self.fraction}
