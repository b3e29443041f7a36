"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

import config.settings as settings_module
from config.settings import (
    EdgeSettings,
    MomentumSettings,
    OddsAPISettings,
    RefreshSettings,
    Settings,
    get_settings,
    reload_settings,
)


class TestRefreshSettings:
    def test_defaults(self):
        settings = RefreshSettings()

        assert settings.poll_interval_ms == 10_000
        assert settings.stale_after_ms == 30_000
        assert settings.min_edge_pct == 2.0

    @pytest.mark.parametrize("field", ["poll_interval_ms", "backoff_base_ms", "history_size"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            RefreshSettings(**{field: 0})

    def test_rejects_cap_below_base(self):
        with pytest.raises(ValidationError):
            RefreshSettings(backoff_base_ms=5_000, backoff_cap_ms=1_000)

    def test_rejects_stale_window_shorter_than_poll(self):
        with pytest.raises(ValidationError):
            RefreshSettings(poll_interval_ms=10_000, stale_after_ms=5_000)

    def test_rejects_negative_edge_threshold(self):
        with pytest.raises(ValidationError):
            RefreshSettings(min_edge_pct=-1.0)

    def test_zero_retry_attempts_allowed(self):
        assert RefreshSettings(retry_attempts=0).retry_attempts == 0


class TestOtherSettings:
    def test_momentum_rejects_zero_window(self):
        with pytest.raises(ValidationError):
            MomentumSettings(window_seconds=0)

    def test_momentum_rejects_gap_penalty_above_one(self):
        with pytest.raises(ValidationError):
            MomentumSettings(gap_penalty=1.5)

    def test_edge_bucket_positive(self):
        with pytest.raises(ValidationError):
            EdgeSettings(bucket_seconds=0)

    def test_odds_key_from_env(self, monkeypatch):
        monkeypatch.setenv("ODDS_API_KEY", "from-env")

        assert OddsAPISettings().api_key == "from-env"


class TestSettings:
    def test_nested_env(self, monkeypatch):
        monkeypatch.setenv("REFRESH__POLL_INTERVAL_MS", "5000")
        monkeypatch.setenv("MOMENTUM__WINDOW_SECONDS", "240")

        settings = Settings()

        assert settings.refresh.poll_interval_ms == 5000
        assert settings.momentum.window_seconds == 240.0

    def test_nested_validation_runs(self, monkeypatch):
        monkeypatch.setenv("REFRESH__STALE_AFTER_MS", "1")

        with pytest.raises(ValidationError):
            Settings()

    def test_tracked_game_ids(self):
        settings = Settings(tracked_games=" 0022500123, ,0022500124 ")

        assert settings.tracked_game_ids == ["0022500123", "0022500124"]

    def test_rejects_unknown_game_market(self):
        with pytest.raises(ValidationError):
            OddsAPISettings(game_markets=["h2h", "alternate_spreads"])


class TestGlobalSettings:
    @pytest.fixture(autouse=True)
    def reset(self, monkeypatch):
        monkeypatch.setattr(settings_module, "_settings", None)

    def test_loaded_on_first_use(self, monkeypatch):
        monkeypatch.setenv("REFRESH__POLL_INTERVAL_MS", "5000")

        first = get_settings()

        assert first.refresh.poll_interval_ms == 5000
        assert get_settings() is first

    def test_bad_environment_raises_on_get(self, monkeypatch):
        monkeypatch.setenv("REFRESH__STALE_AFTER_MS", "1")

        with pytest.raises(ValidationError):
            get_settings()

    def test_reload_replaces_instance(self):
        first = get_settings()

        reloaded = reload_settings(tracked_games="0022500123")

        assert reloaded is not first
        assert get_settings().tracked_game_ids == ["0022500123"]
