"""
Tests for compute backend negotiation.
"""

import pytest

from inference.backend import BackendNegotiator, describe_providers
from inference.errors import BackendUnavailableError
from models.config import BackendConfig
from models.state import BackendKind, BackendState

from conftest import FakeRuntime


class TestSelectBackend:
    def test_primary_gpu_preferred(self, gpu_runtime):
        state = BackendNegotiator(BackendConfig(), runtime=gpu_runtime).select_backend()

        assert state.kind == BackendKind.PRIMARY_GPU
        assert state.providers == ("CUDAExecutionProvider", "CPUExecutionProvider")
        assert state.tuning["arena_extend_strategy"] == "kSameAsRequested"

    def test_secondary_when_primary_missing(self):
        runtime = FakeRuntime(available=("DmlExecutionProvider", "CPUExecutionProvider"))
        state = BackendNegotiator(BackendConfig(), runtime=runtime).select_backend()

        assert state.kind == BackendKind.SECONDARY_GPU
        assert state.provider == "DmlExecutionProvider"
        assert dict(state.tuning) == {}

    def test_cpu_when_no_gpu(self, fake_runtime):
        state = BackendNegotiator(runtime=fake_runtime).select_backend()

        assert state.kind == BackendKind.CPU
        assert state.providers == ("CPUExecutionProvider",)
        assert not state.is_gpu

    def test_secondary_order_respected(self):
        runtime = FakeRuntime(
            available=("CoreMLExecutionProvider", "ROCMExecutionProvider", "CPUExecutionProvider")
        )
        state = BackendNegotiator(runtime=runtime).select_backend()
        assert state.provider == "ROCMExecutionProvider"

    def test_selection_is_cached(self, gpu_runtime):
        negotiator = BackendNegotiator(runtime=gpu_runtime)
        first = negotiator.select_backend()
        gpu_runtime.available = ["CPUExecutionProvider"]

        assert negotiator.select_backend() is first
        assert negotiator.state is first

    def test_no_backend_at_all(self):
        runtime = FakeRuntime(available=())
        with pytest.raises(BackendUnavailableError):
            BackendNegotiator(runtime=runtime).select_backend()


class TestFallBack:
    def test_primary_to_secondary(self, gpu_runtime):
        negotiator = BackendNegotiator(runtime=gpu_runtime)
        primary = negotiator.select_backend()

        secondary = negotiator.fall_back(primary)

        assert secondary.kind == BackendKind.SECONDARY_GPU
        assert dict(secondary.tuning) == {}
        assert negotiator.state is secondary

    def test_skips_unavailable_tier(self):
        runtime = FakeRuntime(available=("CUDAExecutionProvider", "CPUExecutionProvider"))
        negotiator = BackendNegotiator(runtime=runtime)

        state = negotiator.fall_back(negotiator.select_backend())
        assert state.kind == BackendKind.CPU

    def test_nothing_below_cpu(self, fake_runtime):
        negotiator = BackendNegotiator(runtime=fake_runtime)
        with pytest.raises(BackendUnavailableError):
            negotiator.fall_back(negotiator.select_backend())


class TestBackendState:
    def test_provider_options_aligned(self):
        state = BackendState(
            kind=BackendKind.PRIMARY_GPU,
            providers=("CUDAExecutionProvider", "CPUExecutionProvider"),
            tuning={"device_id": 1},
        )
        assert state.provider_options() == [{"device_id": 1}, {}]

    def test_provider_options_without_tuning(self):
        state = BackendState(kind=BackendKind.CPU, providers=("CPUExecutionProvider",))
        assert state.provider_options() == [{}]


class TestSessionOptions:
    def test_graph_optimization_and_threads(self, fake_runtime):
        cfg = BackendConfig(graph_optimization="basic", intra_op_threads=2)
        opts = BackendNegotiator(cfg, runtime=fake_runtime).session_options()

        assert opts.graph_optimization_level == FakeRuntime.GraphOptimizationLevel.ORT_ENABLE_BASIC
        assert opts.intra_op_num_threads == 2

    def test_unknown_level_defaults_to_all(self, fake_runtime):
        opts = BackendNegotiator(BackendConfig(graph_optimization="max"), runtime=fake_runtime).session_options()
        assert opts.graph_optimization_level == FakeRuntime.GraphOptimizationLevel.ORT_ENABLE_ALL


def test_describe_providers():
    assert describe_providers(["CUDAExecutionProvider", "CPUExecutionProvider"]) == "CUDA, CPU"
