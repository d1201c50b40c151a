"""Map decibel scores onto sumo-style rank tiers."""

from __future__ import annotations

from dataclasses import dataclass

from .signal import round_tenth


@dataclass(frozen=True, slots=True)
class RankTier:
    """A named tier reached by scoring at or above ``threshold`` decibels."""

    key: str
    label: str
    threshold: float


# Ordered from the highest threshold to the lowest.
RANK_TIERS: tuple[RankTier, ...] = (
    RankTier("yokozuna", "Yokozuna", 112.0),
    RankTier("ozeki", "Ozeki", 107.0),
    RankTier("sekiwake", "Sekiwake", 102.0),
    RankTier("komusubi", "Komusubi", 97.0),
    RankTier("maegashira", "Maegashira", 92.0),
    RankTier("juryo", "Juryo", 87.0),
    RankTier("makushita", "Makushita", 82.0),
    RankTier("jonidan", "Jonidan", 77.0),
    RankTier("jonokuchi", "Jonokuchi", 72.0),
    RankTier("novice", "Novice", 0.0),
)

NOVICE = RANK_TIERS[-1]
TOP_TIER = RANK_TIERS[0]

LOUDNESS_COMPARISONS: tuple[tuple[float, str], ...] = (
    (130.0, "a jet engine at point-blank range"),
    (120.0, "a rocket launch"),
    (115.0, "the front row of a rock concert"),
    (110.0, "an aeroplane taking off"),
    (105.0, "a running chainsaw"),
    (100.0, "a power drill up close"),
    (95.0, "the inside of a subway car"),
    (90.0, "karaoke at close range"),
    (85.0, "a motorbike engine"),
    (80.0, "a vacuum cleaner"),
    (75.0, "a ringing phone"),
    (70.0, "normal conversation"),
    (65.0, "a library"),
    (60.0, "a quiet office"),
    (0.0, "an almost silent room"),
)


def classify(decibel: float) -> RankTier:
    """Return the highest tier whose threshold ``decibel`` meets."""

    for tier in RANK_TIERS:
        if decibel >= tier.threshold:
            return tier
    return NOVICE


def next_tier(decibel: float) -> RankTier | None:
    """Return the closest tier above ``decibel``, or ``None`` at the top."""

    for tier in reversed(RANK_TIERS):
        if tier.threshold > decibel:
            return tier
    return None


def points_to_next(decibel: float) -> float | None:
    """Decibels still needed to reach :func:`next_tier`."""

    upcoming = next_tier(decibel)
    if upcoming is None:
        return None
    return round_tenth(upcoming.threshold - decibel)


def loudness_comparison(decibel: float) -> str:
    """Describe an everyday sound of roughly the same loudness."""

    for threshold, label in LOUDNESS_COMPARISONS:
        if decibel >= threshold:
            return label
    return LOUDNESS_COMPARISONS[-1][1]


__all__ = [
    "LOUDNESS_COMPARISONS",
    "NOVICE",
    "RANK_TIERS",
    "RankTier",
    "TOP_TIER",
    "classify",
    "loudness_comparison",
    "next_tier",
    "points_to_next",
]
