"""Runtime primitives for timed microphone capture."""

from .capture import (
    CaptureMachine,
    CaptureResult,
    CaptureSession,
    CaptureState,
    RawAudioRecorder,
    summarize,
)
from .exceptions import DeviceAcquisitionError, InvalidTransitionError

__all__ = [
    "CaptureMachine",
    "CaptureResult",
    "CaptureSession",
    "CaptureState",
    "DeviceAcquisitionError",
    "InvalidTransitionError",
    "RawAudioRecorder",
    "summarize",
]
