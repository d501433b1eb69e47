"""
Pipeline module for the detection overlay.

The pipeline orchestrates the full processing flow:
- Single-flight frame submission (InferenceGate)
- Raw output decoding and suppression (PostProcessor)
- Hand-off of each cycle to the render context
- Marker slot updates (SlotManager)
"""

from .engine import CycleResult, OverlayPipeline, PipelineStats, start, stop
from .gate import GateState, InferenceGate, SubmitResult

__all__ = [
    "OverlayPipeline",
    "CycleResult",
    "PipelineStats",
    "start",
    "stop",
    "InferenceGate",
    "GateState",
    "SubmitResult",
]
