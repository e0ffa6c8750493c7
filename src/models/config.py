"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


DEFAULT_PRIMARY_PROVIDERS = ["CUDAExecutionProvider"]
DEFAULT_SECONDARY_PROVIDERS = [
    "ROCMExecutionProvider",
    "DmlExecutionProvider",
    "CoreMLExecutionProvider",
]
DEFAULT_TUNING = {
    "device_id": 0,
    "arena_extend_strategy": "kSameAsRequested",
    "cudnn_conv_algo_search": "HEURISTIC",
    "do_copy_in_default_stream": True,
}


@dataclass
class BackendConfig:
    """Execution provider priority and primary-backend tuning."""
    primary_providers: List[str] = field(default_factory=lambda: list(DEFAULT_PRIMARY_PROVIDERS))
    secondary_providers: List[str] = field(default_factory=lambda: list(DEFAULT_SECONDARY_PROVIDERS))
    tuning: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_TUNING))
    graph_optimization: str = "all"
    intra_op_threads: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BackendConfig":
        return cls(
            primary_providers=list(d.get("primary_providers", DEFAULT_PRIMARY_PROVIDERS)),
            secondary_providers=list(d.get("secondary_providers", DEFAULT_SECONDARY_PROVIDERS)),
            tuning=dict(d.get("tuning", DEFAULT_TUNING) or {}),
            graph_optimization=d.get("graph_optimization", "all"),
            intra_op_threads=d.get("intra_op_threads", 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_providers": self.primary_providers,
            "secondary_providers": self.secondary_providers,
            "tuning": self.tuning,
            "graph_optimization": self.graph_optimization,
            "intra_op_threads": self.intra_op_threads,
        }


@dataclass
class ModelConfig:
    """Detection network artifact and load options."""
    uri: str = ""
    input_size: List[int] = field(default_factory=lambda: [640, 640])
    class_names: Optional[Dict[int, str]] = None
    chunk_size: int = 1 << 20
    request_timeout: float = 30.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        names = d.get("class_names")
        if isinstance(names, list):
            names = {i: str(n) for i, n in enumerate(names)}
        elif isinstance(names, dict):
            names = {int(k): str(v) for k, v in names.items()}
        return cls(
            uri=d.get("uri", ""),
            input_size=list(d.get("input_size", [640, 640])),
            class_names=names,
            chunk_size=d.get("chunk_size", 1 << 20),
            request_timeout=d.get("request_timeout", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "uri": self.uri,
            "input_size": self.input_size,
            "chunk_size": self.chunk_size,
            "request_timeout": self.request_timeout,
        }
        if self.class_names is not None:
            d["class_names"] = self.class_names
        return d


@dataclass
class DetectionConfig:
    """Decoder thresholds."""
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    max_detections: int = 500
    fill_value: int = 114
    clip_boxes: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        return cls(
            conf_threshold=d.get("conf_threshold", 0.25),
            iou_threshold=d.get("iou_threshold", 0.45),
            max_detections=d.get("max_detections", 500),
            fill_value=d.get("fill_value", 114),
            clip_boxes=d.get("clip_boxes", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conf_threshold": self.conf_threshold,
            "iou_threshold": self.iou_threshold,
            "max_detections": self.max_detections,
            "fill_value": self.fill_value,
            "clip_boxes": self.clip_boxes,
        }


@dataclass
class LoopConfig:
    """Streaming loop scheduling."""
    refresh_hz: float = 60.0
    max_consecutive_failures: int = 10

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LoopConfig":
        return cls(
            refresh_hz=d.get("refresh_hz", 60.0),
            max_consecutive_failures=d.get("max_consecutive_failures", 10),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refresh_hz": self.refresh_hz,
            "max_consecutive_failures": self.max_consecutive_failures,
        }


@dataclass
class SourceConfig:
    """Camera / video source configuration."""
    device_id: Union[int, str] = 0
    resolution: Optional[List[int]] = None
    fps: Optional[int] = None
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SourceConfig":
        return cls(
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution"),
            fps=d.get("fps"),
            swap_rb=d.get("swap_rb", False),
            rotate=d.get("rotate", 0) or 0,
            flip_horizontal=d.get("flip_horizontal", False),
            flip_vertical=d.get("flip_vertical", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "swap_rb": self.swap_rb,
            "rotate": self.rotate,
            "flip_horizontal": self.flip_horizontal,
            "flip_vertical": self.flip_vertical,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    backend: BackendConfig = field(default_factory=BackendConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    log_path: Optional[str] = "logs/detector.log"
    log_level: str = "INFO"
    memory_log_interval: float = 30.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            backend=BackendConfig.from_dict(d.get("backend") or {}),
            model=ModelConfig.from_dict(d.get("model") or {}),
            detection=DetectionConfig.from_dict(d.get("detection") or {}),
            loop=LoopConfig.from_dict(d.get("loop") or {}),
            source=SourceConfig.from_dict(d.get("source") or {}),
            log_path=d.get("log_path", "logs/detector.log"),
            log_level=d.get("log_level", "INFO"),
            memory_log_interval=d.get("memory_log_interval", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend.to_dict(),
            "model": self.model.to_dict(),
            "detection": self.detection.to_dict(),
            "loop": self.loop.to_dict(),
            "source": self.source.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
            "memory_log_interval": self.memory_log_interval,
        }
