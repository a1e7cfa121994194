"""Progression engine: XP ledger, levels, missions, streaks, badges and leaderboards."""

__version__ = "0.1.0"
