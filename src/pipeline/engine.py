"""
Overlay pipeline engine.

Wires the tracking feed, the single-flight inference gate, SSD
post-processing and the marker slots together:

    frame listener -> InferenceGate -> backend -> PostProcessor
        -> queue -> tick() on the render context -> SlotManager

Completions never touch the slots directly; they hand each cycle's result
over a queue and the render context applies it in `tick`.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from inference.backend import InferenceBackend, InferenceResult
from inference.postprocess import PostProcessor
from models.detection import Detection, RectangleObservation
from models.frame import CameraPose, FrameHandle
from overlay.slots import SlotManager

from .gate import InferenceGate, SubmitResult

FrameListener = Callable[[FrameHandle, CameraPose], None]


class TrackingSource(Protocol):
    def add_frame_listener(self, listener: FrameListener) -> None:
        ...

    def remove_frame_listener(self, listener: FrameListener) -> None:
        ...


@dataclass
class CycleResult:
    """Output of one inference cycle, handed from the worker to the render context."""
    detections: List[Detection] = field(default_factory=list)
    rectangles: List[RectangleObservation] = field(default_factory=list)
    error: Optional[BaseException] = None
    completed_at: float = field(default_factory=time.time)


@dataclass
class PipelineStats:
    """Runtime statistics for the pipeline."""
    frames_seen: int = 0
    frames_admitted: int = 0
    frames_dropped: int = 0
    cycles_applied: int = 0
    cycle_errors: int = 0
    start_time: float = field(default_factory=time.time)


class OverlayPipeline:
    """
    Detection overlay driven by explicit lifecycle hooks.

    Example:
        pipeline = OverlayPipeline(backend, post_processor, slot_manager)
        pipeline.start(tracking)
        while rendering:
            pipeline.tick(camera_pose)
        pipeline.stop()
    """

    def __init__(
        self,
        backend: InferenceBackend,
        post_processor: PostProcessor,
        slot_manager: SlotManager,
        executor: Optional[Executor] = None,
    ):
        self.post_processor = post_processor
        self.slot_manager = slot_manager
        self.gate = InferenceGate(backend, executor=executor)
        self.stats = PipelineStats()
        self._results: "queue.Queue[CycleResult]" = queue.Queue()
        self._lock = threading.Lock()
        self._accepting = False
        self._tracking: Optional[TrackingSource] = None
        self._callbacks: List[Callable[[CycleResult], None]] = []

    @property
    def running(self) -> bool:
        return self._tracking is not None

    def add_callback(self, callback: Callable[[CycleResult], None]) -> None:
        """
        Add a callback run on the render context after each applied cycle.

        Args:
            callback: Function taking the CycleResult.
        """
        self._callbacks.append(callback)

    def start(self, tracking: TrackingSource) -> None:
        """Register the frame listener and the inference completion handler."""
        if self._tracking is not None:
            return
        self.gate.set_completion_handler(self._on_inference_complete)
        with self._lock:
            self._accepting = True
        tracking.add_frame_listener(self.on_frame)
        self._tracking = tracking
        self.stats = PipelineStats()
        logging.info("Overlay pipeline started")

    def stop(self) -> None:
        """Deregister both handlers. An in-flight inference finishes but is discarded."""
        if self._tracking is None:
            return
        self._tracking.remove_frame_listener(self.on_frame)
        self.gate.set_completion_handler(None)
        self._tracking = None

        with self._lock:
            self._accepting = False
            while True:
                try:
                    self._results.get_nowait()
                except queue.Empty:
                    break

        logging.info(
            f"Overlay pipeline stopped: frames={self.stats.frames_seen}, "
            f"admitted={self.stats.frames_admitted}, dropped={self.stats.frames_dropped}, "
            f"cycles={self.stats.cycles_applied}, errors={self.stats.cycle_errors}"
        )

    def shutdown(self) -> None:
        """Stop and release the inference worker."""
        self.stop()
        self.gate.shutdown()

    def on_frame(self, frame: FrameHandle, pose: Optional[CameraPose] = None) -> SubmitResult:
        """Frame listener: offer the frame to the gate without blocking."""
        self.stats.frames_seen += 1
        outcome = self.gate.submit(frame)
        if outcome is SubmitResult.ADMITTED:
            self.stats.frames_admitted += 1
        else:
            self.stats.frames_dropped += 1
        return outcome

    def _on_inference_complete(
        self,
        result: Optional[InferenceResult],
        error: Optional[BaseException],
    ) -> None:
        """Runs on the inference worker while the gate is still busy."""
        if error is not None or result is None:
            self._publish(CycleResult(error=error))
            return

        try:
            detections = self.post_processor.postprocess(result.raw)
        except Exception as e:
            logging.warning(f"Post-processing failed, clearing overlay: {e}")
            self._publish(CycleResult(error=e))
            return
        self._publish(CycleResult(detections=detections, rectangles=list(result.rectangles)))

    def _publish(self, cycle: CycleResult) -> None:
        with self._lock:
            if not self._accepting:
                return
            self._results.put(cycle)

    def tick(self, pose: Optional[CameraPose] = None) -> int:
        """
        Render-context update: apply completed cycles in order, then keep the
        markers in front of the camera.

        Returns:
            Number of cycles applied during this tick.
        """
        applied = 0
        while True:
            try:
                cycle = self._results.get_nowait()
            except queue.Empty:
                break

            if cycle.error is not None:
                self.stats.cycle_errors += 1
            self.slot_manager.apply(cycle.detections)
            self.stats.cycles_applied += 1
            applied += 1

            for callback in self._callbacks:
                try:
                    callback(cycle)
                except Exception as e:
                    logging.warning(f"Callback error: {e}")

        if pose is not None:
            self.slot_manager.follow(pose)
        return applied


def start(pipeline: OverlayPipeline, tracking: TrackingSource) -> None:
    """Lifecycle hook: attach the pipeline to a tracking source."""
    pipeline.start(tracking)


def stop(pipeline: OverlayPipeline) -> None:
    """Lifecycle hook: detach the pipeline from its collaborators."""
    pipeline.stop()
