"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import threading
from types import SimpleNamespace

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.state import ModelHandle


class FakeSession:
    """Stands in for onnxruntime.InferenceSession."""

    def __init__(self, runtime, payload, providers, provider_options):
        self.runtime = runtime
        self.payload = payload
        self.providers = list(providers)
        self.provider_options = provider_options
        self.run_calls = []

    def get_providers(self):
        return [p for p in self.providers if p not in self.runtime.dropped]

    def get_inputs(self):
        return [SimpleNamespace(name="images", shape=list(self.runtime.input_shape))]

    def get_outputs(self):
        return [SimpleNamespace(name="output0", shape=list(self.runtime.output.shape))]

    def get_modelmeta(self):
        return SimpleNamespace(custom_metadata_map=dict(self.runtime.metadata))

    def run(self, output_names, feeds):
        self.run_calls.append((output_names, feeds))
        self.runtime.run_started.set()
        if self.runtime.run_gate is not None:
            self.runtime.run_gate.wait(timeout=5)
        if self.runtime.run_error is not None:
            raise self.runtime.run_error
        return [self.runtime.output.copy()]


class FakeRuntime:
    """
    Minimal onnxruntime module replacement.

    Attributes:
        available: Providers reported as available.
        failing: Providers whose session creation raises.
        dropped: Providers silently missing from the created session.
        bad_payloads: Payloads that fail to parse on every provider.
        run_gate: Event a forward pass waits on before returning.
    """

    GraphOptimizationLevel = SimpleNamespace(
        ORT_DISABLE_ALL=0, ORT_ENABLE_BASIC=1, ORT_ENABLE_EXTENDED=2, ORT_ENABLE_ALL=99,
    )

    class SessionOptions:
        def __init__(self):
            self.graph_optimization_level = None
            self.intra_op_num_threads = 0

    def __init__(self, available=("CPUExecutionProvider",), input_shape=(1, 3, 32, 32), output=None):
        self.available = list(available)
        self.failing = set()
        self.dropped = set()
        self.bad_payloads = set()
        self.input_shape = input_shape
        self.output = output if output is not None else np.zeros((1, 6, 10), dtype=np.float32)
        self.metadata = {}
        self.run_error = None
        self.run_started = threading.Event()
        self.run_gate = None
        self.sessions = []
        self.attempts = []

    def get_available_providers(self):
        return list(self.available)

    def InferenceSession(self, payload, sess_options=None, providers=None, provider_options=None):
        providers = list(providers or [])
        self.attempts.append(providers)
        if payload in self.bad_payloads:
            raise RuntimeError("INVALID_PROTOBUF: failed to parse model")
        if providers and providers[0] in self.failing:
            raise RuntimeError(f"{providers[0]} failed to initialise")
        session = FakeSession(self, payload, providers, provider_options)
        self.sessions.append(session)
        return session


class FakeCapture:
    """
    Scripted cv2.VideoCapture. Calling the instance "opens" it again, so one
    object sees every reconnect. `fail_reads` holds 1-based read numbers
    that fail.
    """

    def __init__(self, fail_reads=(), frame_shape=(8, 12, 3)):
        self.fail_reads = set(fail_reads)
        self.frame_shape = frame_shape
        self.available = True
        self.reads = 0
        self.opens = 0
        self.releases = 0

    def __call__(self, device_id):
        self.opens += 1
        return self

    def isOpened(self):
        return self.available

    def read(self):
        self.reads += 1
        if self.reads in self.fail_reads:
            return False, None
        return True, np.zeros(self.frame_shape, dtype=np.uint8)

    def release(self):
        self.releases += 1

    def set(self, prop, value):
        return True

    def get(self, prop):
        return 0.0


def yolo_rows(*rows):
    """Build a (1, 4 + C, N) head from [cx, cy, w, h, scores...] rows."""
    return np.array(rows, dtype=np.float32).T[None, ...]


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def gpu_runtime():
    return FakeRuntime(available=("CUDAExecutionProvider", "DmlExecutionProvider", "CPUExecutionProvider"))


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.onnx"
    path.write_bytes(b"onnx-model-bytes" * 64)
    return path


@pytest.fixture
def make_handle():
    """Factory for ModelHandles backed by a FakeSession."""

    def _make(output, input_shape=(1, 3, 32, 32), class_names=None, runtime=None):
        runtime = runtime or FakeRuntime(input_shape=input_shape, output=output)
        runtime.output = output
        session = runtime.InferenceSession(b"model", providers=["CPUExecutionProvider"])
        return ModelHandle(
            session=session,
            input_name="images",
            input_shape=tuple(input_shape),
            layout="NCHW",
            output_names=("output0",),
            class_names=class_names or {},
        )

    return _make


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
model:
  uri: "models/yolo11s.onnx"
  input_size: [640, 640]

detection:
  conf_threshold: 0.25
  iou_threshold: 0.45

loop:
  refresh_hz: 60
  max_consecutive_failures: 10

source:
  device_id: 0

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "backend": {
            "primary_providers": ["CUDAExecutionProvider"],
            "secondary_providers": ["DmlExecutionProvider"],
            "tuning": {"device_id": 0},
        },
        "model": {
            "uri": "models/yolo11s.onnx",
            "input_size": [640, 640],
        },
        "detection": {
            "conf_threshold": 0.25,
            "iou_threshold": 0.45,
            "max_detections": 300,
        },
        "loop": {
            "refresh_hz": 30,
            "max_consecutive_failures": 5,
        },
        "source": {
            "device_id": 0,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


@pytest.fixture
def fake_capture(monkeypatch):
    """Replace cv2.VideoCapture with a FakeCapture."""
    capture = FakeCapture()
    monkeypatch.setattr("observation.opencv_source.cv2.VideoCapture", capture)
    return capture
