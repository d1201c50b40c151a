"""Timed capture sessions turning live loudness into a single score."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

from ..ranking.models import RankingSubmission
from ..ranks import RankTier, classify, loudness_comparison, next_tier, points_to_next
from ..signal import DEFAULT_FRAME_SIZE, AudioSource, LoudnessEstimator, round_tenth

from .exceptions import DeviceAcquisitionError, InvalidTransitionError

logger = logging.getLogger(__name__)

DEFAULT_COUNTDOWN = 5


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SUMMARIZING = "summarizing"
    RESULT = "result"


class RawAudioRecorder(Protocol):
    """Encoder that keeps the raw audio of a capture for optional upload."""

    mimetype: str

    def start(self) -> None:
        """Begin buffering encoded audio."""

    def stop(self) -> bytes:
        """Stop recording and return every buffered byte."""


@dataclass(frozen=True, slots=True)
class MeasurementSample:
    """A single loudness reading taken during a capture."""

    value: float
    offset: float


@dataclass(slots=True)
class CaptureSession:
    """Mutable state of the capture currently in progress."""

    remaining: int
    started_at: float = field(default_factory=time.monotonic)
    peak: float = 0.0
    samples: list[MeasurementSample] = field(default_factory=list)
    audio: bytes | None = None

    @property
    def live_average(self) -> float:
        if not self.samples:
            return 0.0
        return sum(sample.value for sample in self.samples) / len(self.samples)


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """Summary of a finished capture."""

    score: float
    peak: float
    sample_count: int
    audio: bytes | None = None
    audio_mimetype: str | None = None

    @property
    def tier(self) -> RankTier:
        return classify(self.score)

    @property
    def next_tier(self) -> RankTier | None:
        return next_tier(self.score)

    @property
    def points_to_next(self) -> float | None:
        return points_to_next(self.score)

    @property
    def comparison(self) -> str:
        return loudness_comparison(self.score)

    def to_submission(
        self,
        display_name: str,
        *,
        audio_public: bool = False,
        owner_id: str | None = None,
    ) -> RankingSubmission:
        """Build the leaderboard submission for this result."""

        return RankingSubmission(
            display_name=display_name,
            decibel=self.score,
            is_audio_public=audio_public,
            audio=self.audio if audio_public else None,
            audio_mimetype=self.audio_mimetype if audio_public else None,
            owner_id=owner_id,
        )


def summarize(samples: Sequence[float]) -> float:
    """Return the rounded mean of ``samples`` or ``0.0`` when empty."""

    if not samples:
        return 0.0
    return round_tenth(sum(samples) / len(samples))


class CaptureMachine:
    """Drive one fixed-length recording: countdown, sampling, summary."""

    def __init__(
        self,
        source: AudioSource,
        *,
        recorder: RawAudioRecorder | None = None,
        countdown: int = DEFAULT_COUNTDOWN,
        tick_interval: float = 1.0,
        frame_interval: float = 1 / 60,
        frame_size: int = DEFAULT_FRAME_SIZE,
    ) -> None:
        if countdown < 1:
            raise ValueError("countdown must be at least one tick")
        self._estimator = LoudnessEstimator(source, frame_size=frame_size)
        self._recorder = recorder
        self._countdown = countdown
        self._tick_interval = tick_interval
        self._frame_interval = frame_interval
        self._state = CaptureState.IDLE
        self._session: CaptureSession | None = None
        self._result: CaptureResult | None = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def session(self) -> CaptureSession | None:
        return self._session

    @property
    def result(self) -> CaptureResult | None:
        return self._result

    @property
    def remaining(self) -> int:
        return self._session.remaining if self._session else 0

    @property
    def peak(self) -> float:
        return self._session.peak if self._session else 0.0

    @property
    def live_average(self) -> float:
        return self._session.live_average if self._session else 0.0

    def start(self) -> CaptureSession:
        """Acquire the microphone and begin the countdown."""

        if self._state is not CaptureState.IDLE:
            raise InvalidTransitionError(f"cannot start while {self._state.value}")

        self._estimator.start()
        if self._recorder is not None:
            try:
                self._recorder.start()
            except (OSError, RuntimeError) as exc:
                self._estimator.close()
                raise DeviceAcquisitionError(str(exc) or "recorder unavailable") from exc

        self._result = None
        self._session = CaptureSession(remaining=self._countdown)
        self._state = CaptureState.RECORDING
        return self._session

    def sample(self) -> float:
        """Take one loudness reading and fold it into the session."""

        session = self._require_recording()
        value = self._estimator.read()
        if value > session.peak:
            session.peak = value
        if value > 0:
            session.samples.append(
                MeasurementSample(value=value, offset=time.monotonic() - session.started_at)
            )
        return value

    def tick(self) -> int:
        """Advance the countdown by one second; finish when it reaches zero."""

        session = self._require_recording()
        session.remaining -= 1
        if session.remaining <= 0:
            self._finish()
        return max(session.remaining, 0)

    def discard(self) -> None:
        """Throw away the current capture without submitting it."""

        if self._state is CaptureState.IDLE:
            return
        if self._state is CaptureState.RECORDING:
            self._release()
        self._session = None
        self._result = None
        self._state = CaptureState.IDLE

    async def run(self) -> CaptureResult:
        """Run a complete capture on the event loop and return its result."""

        self.start()
        sampler = asyncio.create_task(self._sample_loop(), name="capture-sampler")
        try:
            while self._state is CaptureState.RECORDING:
                await asyncio.sleep(self._tick_interval)
                if self._state is CaptureState.RECORDING:
                    self.tick()
        finally:
            sampler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sampler
            if self._state is CaptureState.RECORDING:
                logger.info("Capture interrupted before the countdown finished")
                self.discard()

        if self._result is None:
            raise InvalidTransitionError("capture was discarded before it finished")
        return self._result

    async def _sample_loop(self) -> None:
        while self._state is CaptureState.RECORDING:
            self.sample()
            await asyncio.sleep(self._frame_interval)

    def _require_recording(self) -> CaptureSession:
        if self._state is not CaptureState.RECORDING or self._session is None:
            raise InvalidTransitionError(f"not recording (state is {self._state.value})")
        return self._session

    def _release(self) -> bytes | None:
        self._estimator.close()
        if self._recorder is None:
            return None
        try:
            return self._recorder.stop()
        except (OSError, RuntimeError):
            logger.warning("Raw audio recorder failed to stop", exc_info=True)
            return None

    def _finish(self) -> None:
        session = self._session
        if session is None:
            raise InvalidTransitionError("no capture session to summarize")

        self._state = CaptureState.SUMMARIZING
        audio = self._release()
        session.audio = audio or None

        score = summarize([sample.value for sample in session.samples])
        self._result = CaptureResult(
            score=score,
            peak=session.peak,
            sample_count=len(session.samples),
            audio=session.audio,
            audio_mimetype=self._recorder.mimetype if session.audio and self._recorder else None,
        )
        session.samples.clear()
        self._state = CaptureState.RESULT
        logger.info(
            "Capture finished: score=%.1f peak=%.1f samples=%d",
            score,
            session.peak,
            self._result.sample_count,
        )
