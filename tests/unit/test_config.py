"""Tests for engine settings."""

from progression.config import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.log_format == "json"
        assert settings.session_idle_timeout_minutes == 15
        assert settings.session_bonus_step_minutes == 5
        assert settings.notification_channel_prefix == "pubsub:progression"
        assert settings.streak_milestone_rewards is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("PROGRESSION_TIMEZONE", "Europe/Berlin")
        monkeypatch.setenv("PROGRESSION_ROLLOVER_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("progression_streak_milestone_rewards", "false")
        settings = Settings(_env_file=None)
        assert settings.timezone == "Europe/Berlin"
        assert settings.rollover_interval_seconds == 5.0
        assert settings.streak_milestone_rewards is False

    def test_get_settings_is_cached(self, monkeypatch):
        get_settings.cache_clear()
        monkeypatch.setenv("PROGRESSION_USER_ID", "player-7")
        try:
            first = get_settings()
            assert first.user_id == "player-7"
            assert get_settings() is first
        finally:
            get_settings.cache_clear()
