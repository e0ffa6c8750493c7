"""
Detection loop controller for streaming sources.

State machine: IDLE -> RUNNING -> {RUNNING, STOPPED}, and STOPPED -> RUNNING on
a new start(). While RUNNING a ticker task waits on a FrameClock (the display
refresh stand-in) and attempts one cycle per tick. A tick that arrives while
the previous cycle is still in flight is skipped rather than queued, so
latency stays bounded and only one cycle per controller ever runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol

from inference.errors import LoopEscalationError
from models.config import LoopConfig
from models.frame import FrameData
from observation.base import ObservationSource
from .cycle import CycleResult, DetectionPipeline
from .render import Renderer


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class FrameClock(Protocol):
    async def next_tick(self) -> None:
        ...


class IntervalClock(FrameClock):
    """Ticks at a fixed rate. Missed ticks are dropped, never bunched up."""

    def __init__(self, hz: float = 60.0):
        if hz <= 0:
            raise ValueError("refresh rate must be positive")
        self.interval = 1.0 / hz
        self._next: Optional[float] = None

    async def next_tick(self) -> None:
        now = asyncio.get_running_loop().time()
        if self._next is None or self._next < now:
            self._next = now
        self._next += self.interval
        await asyncio.sleep(self._next - now)


@dataclass
class LoopStats:
    """Runtime statistics for one RUNNING period."""
    ticks: int = 0
    cycles: int = 0
    skipped_ticks: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_cycle_ms: float = 0.0
    started_at: float = field(default_factory=time.time)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class DetectionLoopController:
    """
    Drives DetectionPipeline cycles from an ObservationSource.

    Example:
        controller = DetectionLoopController(pipeline, OverlayRenderer(), LoopConfig())
        await controller.start(OpenCVSource(OpenCVSourceConfig(device_id=0)))
        ...
        controller.stop()
        await controller.join()
    """

    def __init__(
        self,
        pipeline: DetectionPipeline,
        renderer: Optional[Renderer] = None,
        config: Optional[LoopConfig] = None,
        clock: Optional[FrameClock] = None,
    ):
        self.pipeline = pipeline
        self.renderer = renderer
        self.config = config or LoopConfig()
        self.clock = clock or IntervalClock(self.config.refresh_hz)
        self.state = LoopState.IDLE
        self.stats = LoopStats()
        self.failure: Optional[LoopEscalationError] = None
        self._source: Optional[ObservationSource] = None
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._generation = 0
        self._callbacks: List[Callable[[CycleResult], None]] = []

    def add_callback(self, callback: Callable[[CycleResult], None]) -> None:
        """Call `callback(result)` after each rendered cycle."""
        self._callbacks.append(callback)

    @property
    def source(self) -> Optional[ObservationSource]:
        return self._source

    async def start(self, source: ObservationSource) -> None:
        """
        Attach a source. Streaming sources start the loop; still sources get
        exactly one cycle and leave the state untouched.
        """
        if self.state == LoopState.RUNNING:
            self.stop()

        if not source.is_open:
            await asyncio.to_thread(source.open)

        if not source.streaming:
            try:
                frame = source.read()
                if frame is not None:
                    await self.run_still(frame)
            finally:
                source.close()
            return

        self._source = source
        self.stats = LoopStats()
        self.failure = None
        self._stopped = asyncio.Event()
        self._generation += 1
        self._set_state(LoopState.RUNNING)
        self._ticker = asyncio.get_running_loop().create_task(
            self._tick_loop(), name=f"detect-loop:{source.source_id}"
        )

    def stop(self) -> None:
        """
        Transition to STOPPED. No new cycle starts after this returns; a cycle
        already executing finishes (and releases its buffers) but is not
        rendered.
        """
        if self.state != LoopState.RUNNING:
            return
        self._set_state(LoopState.STOPPED)

        if self._ticker is not None and self._ticker is not _current_task():
            self._ticker.cancel()

        source = self._source
        inflight = self._inflight
        if inflight is not None and not inflight.done() and inflight is not _current_task():
            inflight.add_done_callback(lambda _task: self._close_source(source))
        else:
            self._close_source(source)

        if self._stopped is not None:
            self._stopped.set()

    pause = stop

    async def join(self) -> None:
        """
        Wait for the loop to stop and for pending work to settle.

        Raises:
            LoopEscalationError: If the loop stopped itself after repeated failures.
        """
        if self._stopped is not None:
            await self._stopped.wait()
        pending = [t for t in (self._ticker, self._inflight) if t is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self.failure is not None:
            raise self.failure

    async def run_still(self, frame: FrameData) -> CycleResult:
        """Run exactly one cycle for a still image. Errors propagate."""
        result = await asyncio.to_thread(self.pipeline.run_cycle, frame)
        self._deliver(result)
        return result

    async def _tick_loop(self) -> None:
        while self.state == LoopState.RUNNING:
            await self.clock.next_tick()
            if self.state != LoopState.RUNNING:
                break
            self.stats.ticks += 1
            if self._inflight is not None and not self._inflight.done():
                self.stats.skipped_ticks += 1
                continue
            self._inflight = asyncio.get_running_loop().create_task(self._cycle())

    def _is_current(self, generation: int) -> bool:
        return self.state == LoopState.RUNNING and generation == self._generation

    async def _cycle(self) -> None:
        generation = self._generation
        if not self._is_current(generation):
            return
        source = self._source

        try:
            frame = await asyncio.to_thread(source.read)
        except Exception as e:
            if self._is_current(generation):
                self._record_failure(e)
            return

        if frame is None:
            logging.info(f"Source {source.source_id} exhausted, stopping detection loop")
            if generation == self._generation:
                self.stop()
            return
        if not self._is_current(generation):
            return

        try:
            result = await asyncio.to_thread(self.pipeline.run_cycle, frame)
        except Exception as e:
            if self._is_current(generation):
                self._record_failure(e)
            return

        self.stats.cycles += 1
        self.stats.consecutive_failures = 0
        self.stats.last_cycle_ms = result.duration_ms

        if not self._is_current(generation):
            logging.debug(f"Dropping result of frame {frame.frame_index}, loop stopped")
            return
        self._deliver(result)

    def _deliver(self, result: CycleResult) -> None:
        if self.renderer is not None:
            try:
                self.renderer.render(result.instruction)
            except Exception as e:
                logging.warning(f"Renderer error: {e}")

        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logging.warning(f"Callback error: {e}")

    def _record_failure(self, error: Exception) -> None:
        self.stats.failures += 1
        self.stats.consecutive_failures += 1
        limit = self.config.max_consecutive_failures
        logging.warning(
            f"Detection cycle failed ({self.stats.consecutive_failures}/{limit}): {error}"
        )
        if self.stats.consecutive_failures >= limit:
            self.failure = LoopEscalationError(
                f"Too many consecutive failures ({self.stats.consecutive_failures}), stopping",
                failures=self.stats.consecutive_failures,
            )
            self.failure.__cause__ = error
            logging.error(str(self.failure))
            self.stop()

    def _close_source(self, source: Optional[ObservationSource]) -> None:
        if source is None:
            return
        try:
            source.close()
        except Exception as e:
            logging.warning(f"Error closing source: {e}")

    def _set_state(self, state: LoopState) -> None:
        logging.info(f"Detection loop: {self.state.value} -> {state.value}")
        self.state = state
