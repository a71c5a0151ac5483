"""Progression engine: XP, streaks, power-ups, daily resets and activity sessions."""
