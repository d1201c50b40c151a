"""ShoutRank: loudness measurement and seasonal leaderboard."""

__version__ = "0.1.0"
