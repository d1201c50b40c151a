"""Leaderboard submissions, listings, deletions and personal history."""

from .exceptions import EntryNotFoundError, EntryPermissionError, SubmissionValidationError
from .models import LeaderboardRow, RankingSubmission, SubmissionReceipt
from .service import (
    MAX_AUDIO_BYTES,
    MAX_DECIBEL,
    MAX_DISPLAY_NAME,
    RankingService,
    validate_decibel,
    validate_display_name,
)

__all__ = [
    "EntryNotFoundError",
    "EntryPermissionError",
    "LeaderboardRow",
    "MAX_AUDIO_BYTES",
    "MAX_DECIBEL",
    "MAX_DISPLAY_NAME",
    "RankingService",
    "RankingSubmission",
    "SubmissionReceipt",
    "SubmissionValidationError",
    "validate_decibel",
    "validate_display_name",
]
