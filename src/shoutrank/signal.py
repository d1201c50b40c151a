"""Loudness estimation from raw time-domain audio frames."""

from __future__ import annotations

import logging
import math
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = 2048
RMS_FLOOR = 1e-5
DBFS_FLOOR = -100.0
DISPLAY_OFFSET = 120.0


class DeviceAcquisitionError(RuntimeError):
    """Raised when the microphone is denied or no input device exists."""


class AudioSource(Protocol):
    """Live audio input delivering float waveform frames in ``[-1, 1]``."""

    def open(self) -> None:
        """Acquire the input device."""

    def read_frame(self, size: int) -> np.ndarray:
        """Return the most recent ``size`` samples of the waveform."""

    def close(self) -> None:
        """Release the input device."""


def round_tenth(value: float) -> float:
    """Round half-up to one decimal place."""

    return math.floor(value * 10 + 0.5) / 10


def frame_rms(frame: np.ndarray) -> float:
    """Return the root-mean-square amplitude of ``frame``."""

    samples = np.asarray(frame, dtype=np.float64)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples))))


def rms_to_decibel(rms: float) -> float:
    """Map an RMS amplitude onto the 0-120 display scale.

    Amplitudes at or below ``RMS_FLOOR`` are pinned to ``DBFS_FLOOR`` so that
    digital silence never reaches ``log10(0)``.
    """

    dbfs = 20 * math.log10(rms) if rms > RMS_FLOOR else DBFS_FLOOR
    return max(0.0, round_tenth(dbfs + DISPLAY_OFFSET))


def is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


class LoudnessEstimator:
    """Turn an :class:`AudioSource` into a stream of decibel readings."""

    def __init__(self, source: AudioSource, *, frame_size: int = DEFAULT_FRAME_SIZE) -> None:
        if not is_power_of_two(frame_size):
            raise ValueError(f"frame_size must be a power of two, got {frame_size}")
        self._source = source
        self._frame_size = frame_size
        self._active = False

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Open the underlying source; failures mean the estimator never starts."""

        if self._active:
            return
        try:
            self._source.open()
        except DeviceAcquisitionError:
            raise
        except (OSError, RuntimeError) as exc:
            raise DeviceAcquisitionError(str(exc) or "audio input unavailable") from exc
        self._active = True

    def read(self) -> float:
        """Return the loudness of the current frame."""

        if not self._active:
            raise RuntimeError("estimator is not started")
        frame = self._source.read_frame(self._frame_size)
        return rms_to_decibel(frame_rms(frame))

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            self._source.close()
        except (OSError, RuntimeError):
            logger.warning("Audio source did not close cleanly", exc_info=True)


class ArraySource:
    """Replay a pre-recorded waveform one frame at a time.

    Once the waveform is exhausted the source yields silence.
    """

    def __init__(self, waveform: np.ndarray) -> None:
        self._waveform = np.asarray(waveform, dtype=np.float32).ravel()
        self._cursor = 0
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True
        self.closed = False
        self._cursor = 0

    def read_frame(self, size: int) -> np.ndarray:
        frame = self._waveform[self._cursor : self._cursor + size]
        self._cursor += size
        if frame.size < size:
            frame = np.pad(frame, (0, size - frame.size))
        return frame

    def close(self) -> None:
        self.closed = True


__all__ = [
    "ArraySource",
    "AudioSource",
    "DeviceAcquisitionError",
    "LoudnessEstimator",
    "frame_rms",
    "rms_to_decibel",
    "round_tenth",
]
