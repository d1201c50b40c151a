"""Custom exceptions used by the capture runtime."""

from __future__ import annotations

from ..signal import DeviceAcquisitionError


class InvalidTransitionError(RuntimeError):
    """Raised when a capture operation is not allowed in the current state."""


__all__ = ["DeviceAcquisitionError", "InvalidTransitionError"]
