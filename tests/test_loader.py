"""
Tests for model fetching, session creation, warm-up and load progress.
"""

import asyncio

import numpy as np
import pytest

from inference.backend import BackendNegotiator
from inference.errors import ModelLoadError
from inference.fetch import fetch_model
from inference.loader import ModelLoader, ProgressTracker, read_class_names, resolve_input_shape
from inference.reclaimer import ResourceReclaimer
from models.config import ModelConfig
from models.state import BackendKind, LoadProgress

from conftest import FakeRuntime


def load(runtime, uri, config=None, reclaimer=None, on_progress=None):
    loader = ModelLoader(BackendNegotiator(runtime=runtime), config or ModelConfig(), reclaimer=reclaimer)
    handle = asyncio.run(loader.load_model(str(uri), on_progress=on_progress))
    return loader, handle


class TestProgressTracker:
    def test_monotonic_and_capped(self):
        seen = []
        tracker = ProgressTracker(seen.append)
        for fraction in (0.0, 0.3, 0.2, 0.3, 1.0, 0.5):
            tracker.update(fraction)

        fractions = [p.fraction for p in seen]
        assert fractions == sorted(fractions)
        assert fractions == [0.0, 0.3, 0.99]
        assert all(p.is_loading for p in seen)

    def test_finish_emits_once(self):
        seen = []
        tracker = ProgressTracker(seen.append)
        tracker.update(0.5)
        tracker.finish()
        tracker.finish()
        tracker.update(0.7)

        assert seen[-1] == LoadProgress(is_loading=False, fraction=1.0)
        assert sum(1 for p in seen if not p.is_loading) == 1
        assert tracker.current == LoadProgress.done()

    def test_observer_errors_do_not_abort(self):
        def broken(_progress):
            raise ValueError("observer failed")

        tracker = ProgressTracker(broken)
        tracker.update(0.4)
        tracker.finish()
        assert tracker.current.fraction == 1.0


class TestResolveInputShape:
    def test_static_nchw(self):
        assert resolve_input_shape([1, 3, 640, 640]) == ((1, 3, 640, 640), "NCHW")

    def test_dynamic_dims_use_input_size(self):
        shape, layout = resolve_input_shape(["batch", 3, "height", "width"], [416, 320])
        assert shape == (1, 3, 320, 416)
        assert layout == "NCHW"

    def test_nhwc(self):
        assert resolve_input_shape([1, 320, 320, 3]) == ((1, 320, 320, 3), "NHWC")

    def test_rejects_non_image_input(self):
        with pytest.raises(ModelLoadError):
            resolve_input_shape([1, 3, 640])

    def test_rejects_fixed_batch(self):
        with pytest.raises(ModelLoadError):
            resolve_input_shape([4, 3, 640, 640])


class TestReadClassNames:
    def test_dict_metadata(self, fake_runtime):
        fake_runtime.metadata = {"names": "{0: 'person', 1: 'bicycle'}"}
        session = fake_runtime.InferenceSession(b"m", providers=["CPUExecutionProvider"])
        assert read_class_names(session) == {0: "person", 1: "bicycle"}

    def test_missing_metadata(self, fake_runtime):
        session = fake_runtime.InferenceSession(b"m", providers=["CPUExecutionProvider"])
        assert read_class_names(session) == {}


class TestFetchModel:
    def test_reads_file_with_progress(self, model_file):
        seen = []
        payload = fetch_model(str(model_file), chunk_size=100, on_progress=seen.append)

        assert payload == model_file.read_bytes()
        assert seen[-1] == pytest.approx(1.0)
        assert seen == sorted(seen)

    def test_file_uri(self, model_file):
        assert fetch_model(model_file.as_uri()) == model_file.read_bytes()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelLoadError):
            fetch_model(str(tmp_path / "missing.onnx"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.onnx"
        path.write_bytes(b"")
        with pytest.raises(ModelLoadError):
            fetch_model(str(path))

    def test_unsupported_scheme(self):
        with pytest.raises(ModelLoadError):
            fetch_model("ftp://example.com/model.onnx")


class TestModelLoader:
    def test_load_describes_model(self, fake_runtime, model_file):
        fake_runtime.input_shape = [1, 3, "height", "width"]
        fake_runtime.metadata = {"names": "['person', 'car']"}
        config = ModelConfig(input_size=[64, 48])

        loader, handle = load(fake_runtime, model_file, config=config)

        assert handle.input_name == "images"
        assert handle.input_shape == (1, 3, 48, 64)
        assert handle.output_names == ("output0",)
        assert handle.class_names == {0: "person", 1: "car"}
        assert handle.uri == str(model_file)
        assert loader.backend_state.kind == BackendKind.CPU

    def test_configured_class_names_win(self, fake_runtime, model_file):
        fake_runtime.metadata = {"names": "['person']"}
        _, handle = load(fake_runtime, model_file, config=ModelConfig(class_names={0: "pedestrian"}))
        assert handle.class_names == {0: "pedestrian"}

    def test_progress_monotonic_with_single_completion(self, fake_runtime, model_file):
        seen = []
        load(fake_runtime, model_file, config=ModelConfig(chunk_size=64), on_progress=seen.append)

        fractions = [p.fraction for p in seen]
        assert fractions == sorted(fractions)
        assert seen[0].is_loading
        assert all(p.fraction < 1.0 for p in seen[:-1])
        assert seen[-1] == LoadProgress(is_loading=False, fraction=1.0)
        assert sum(1 for p in seen if p.fraction == 1.0) == 1

    def test_exactly_one_warmup_inference(self, fake_runtime, model_file):
        reclaimer = ResourceReclaimer()
        _, handle = load(fake_runtime, model_file, reclaimer=reclaimer)

        calls = handle.session.run_calls
        assert len(calls) == 1
        feed = calls[0][1]["images"]
        assert feed.shape == (1, 3, 32, 32)
        assert np.all(feed == 1.0)
        assert reclaimer.live_buffers == 0
        assert reclaimer.cycles == 1

    def test_warmup_always_runs(self, fake_runtime, model_file):
        config = ModelConfig.from_dict({"uri": str(model_file), "warmup": False})
        _, handle = load(fake_runtime, model_file, config=config)
        assert len(handle.session.run_calls) == 1

    def test_warmup_failure(self, fake_runtime, model_file):
        fake_runtime.run_error = RuntimeError("kernel missing")
        reclaimer = ResourceReclaimer()
        with pytest.raises(ModelLoadError, match="Warm-up"):
            load(fake_runtime, model_file, reclaimer=reclaimer)
        assert reclaimer.live_buffers == 0

    def test_missing_file(self, fake_runtime, tmp_path):
        with pytest.raises(ModelLoadError):
            load(fake_runtime, tmp_path / "missing.onnx")

    def test_no_uri(self, fake_runtime):
        loader = ModelLoader(BackendNegotiator(runtime=fake_runtime))
        with pytest.raises(ModelLoadError):
            asyncio.run(loader.load_model())

    def test_malformed_model(self, gpu_runtime, model_file):
        gpu_runtime.bad_payloads.add(model_file.read_bytes())
        with pytest.raises(ModelLoadError):
            load(gpu_runtime, model_file)
        assert [p[0] for p in gpu_runtime.attempts] == [
            "CUDAExecutionProvider", "DmlExecutionProvider", "CPUExecutionProvider",
        ]

    def test_falls_back_when_gpu_session_fails(self, gpu_runtime, model_file):
        gpu_runtime.failing.add("CUDAExecutionProvider")
        loader, handle = load(gpu_runtime, model_file)

        assert loader.backend_state.kind == BackendKind.SECONDARY_GPU
        assert handle.session.providers[0] == "DmlExecutionProvider"

    def test_falls_back_when_gpu_provider_dropped(self, gpu_runtime, model_file):
        gpu_runtime.dropped.update({"CUDAExecutionProvider", "DmlExecutionProvider"})
        loader, handle = load(gpu_runtime, model_file)

        assert loader.backend_state.kind == BackendKind.CPU
        assert handle.session.providers == ["CPUExecutionProvider"]

    def test_primary_session_gets_tuning(self, gpu_runtime, model_file):
        _, handle = load(gpu_runtime, model_file)

        options = handle.session.provider_options
        assert options[0]["cudnn_conv_algo_search"] == "HEURISTIC"
        assert options[1] == {}

    def test_rejects_fixed_batch_model(self, fake_runtime, model_file):
        fake_runtime.input_shape = [8, 3, 32, 32]
        with pytest.raises(ModelLoadError):
            load(fake_runtime, model_file)
