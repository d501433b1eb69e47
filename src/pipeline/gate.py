"""
Single-flight inference gate.

At most one inference is outstanding at any time. Frames submitted while an
inference is running are dropped, not queued: a live overlay wants the
freshest frame, not every frame.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Optional

from inference.backend import InferenceBackend, InferenceResult, image_from_handle
from models.frame import FrameHandle, ImageRepresentation

CompletionHandler = Callable[[Optional[InferenceResult], Optional[BaseException]], None]


class GateState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


class SubmitResult(str, Enum):
    ADMITTED = "admitted"
    DROPPED = "dropped"


class InferenceGate:
    """
    Two-state throttle in front of the inference backend.

    IDLE -> BUSY when `submit` admits a frame; BUSY -> IDLE when the backend
    call finishes, whether it succeeded or raised. The completion handler
    runs on the inference worker before the gate is released, so nothing
    else touches the backend output until it returns.

    Example:
        gate = InferenceGate(backend, on_complete=handle_result)
        gate.submit(frame_handle)  # SubmitResult.ADMITTED
        gate.submit(frame_handle)  # SubmitResult.DROPPED while busy
    """

    def __init__(
        self,
        backend: InferenceBackend,
        on_complete: Optional[CompletionHandler] = None,
        executor: Optional[Executor] = None,
    ):
        self._backend = backend
        self._on_complete = on_complete
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")
        self._lock = threading.Lock()
        self._state = GateState.IDLE
        self._pending: Optional[FrameHandle] = None

        self.admitted_count = 0
        self.dropped_count = 0
        self.error_count = 0

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is GateState.BUSY

    @property
    def pending_frame(self) -> Optional[FrameHandle]:
        """Frame currently being evaluated, if any."""
        return self._pending

    def set_completion_handler(self, handler: Optional[CompletionHandler]) -> None:
        self._on_complete = handler

    def submit(
        self,
        buffer: Any,
        representation: ImageRepresentation = ImageRepresentation.VIDEO_BUFFER,
    ) -> SubmitResult:
        """
        Offer a frame for inference. Never blocks.

        Args:
            buffer: A FrameHandle, or a raw image buffer described by `representation`.
            representation: Storage of `buffer` when it is not a FrameHandle.
        """
        frame = buffer if isinstance(buffer, FrameHandle) else FrameHandle(buffer, representation)

        with self._lock:
            if self._state is GateState.BUSY:
                self.dropped_count += 1
                return SubmitResult.DROPPED
            self._state = GateState.BUSY
            self._pending = frame
            self.admitted_count += 1

        try:
            self._executor.submit(self._run, frame)
        except RuntimeError as e:
            # Executor shut down; never leave the gate stuck busy.
            logging.warning(f"Inference executor rejected frame: {e}")
            self._release()
            with self._lock:
                self.admitted_count -= 1
                self.dropped_count += 1
            return SubmitResult.DROPPED

        return SubmitResult.ADMITTED

    def _run(self, frame: FrameHandle) -> None:
        result: Optional[InferenceResult] = None
        error: Optional[BaseException] = None
        try:
            try:
                image = image_from_handle(frame.buffer, frame.representation)
                result = self._backend.run_inference(image)
            except Exception as e:
                error = e
                self.error_count += 1
                logging.warning(f"Inference failed for frame {frame.frame_index}: {e}")

            handler = self._on_complete
            if handler is not None:
                try:
                    handler(result, error)
                except Exception as e:
                    logging.error(f"Inference completion handler error: {e}")
        finally:
            self._release()

    def _release(self) -> None:
        with self._lock:
            self._state = GateState.IDLE
            self._pending = None

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker if the gate created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
