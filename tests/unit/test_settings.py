"""Unit tests for psi_runner.config.settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from psi_runner.config.settings import Settings, get_settings


class TestDefaults:
    def test_runner_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in (
            "BATCH_SIZE",
            "FETCH_TIMEOUT_SECONDS",
            "MAX_RETRIES",
            "MAX_FILMSTRIP_FRAMES",
            "INTER_CALL_DELAY_SECONDS",
            "STUCK_TASK_THRESHOLD_MINUTES",
            "MAX_RUNNER_ITERATIONS",
            "ITERATION_PAUSE_SECONDS",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.batch_size == 5
        assert settings.fetch_timeout_seconds == 90
        assert settings.max_retries == 4
        assert settings.max_filmstrip_frames == 10
        assert settings.inter_call_delay_seconds == pytest.approx(1.1)
        assert settings.stuck_task_threshold_minutes == 30
        assert settings.max_runner_iterations == 10
        assert settings.iteration_pause_seconds == pytest.approx(1.0)
        assert settings.pagespeed_api_url.endswith("/pagespeedonline/v5/runPagespeed")

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BATCH_SIZE", "12")
        monkeypatch.setenv("MAX_RETRIES", "0")

        settings = Settings(_env_file=None)

        assert settings.batch_size == 12
        assert settings.max_retries == 0


class TestValidation:
    def test_api_key_is_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    @pytest.mark.parametrize(
        "field, value",
        [("batch_size", 0), ("fetch_timeout_seconds", 0), ("max_retries", -1)],
    )
    def test_out_of_range_values_rejected(self, field: str, value: object) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestGetSettings:
    def test_returns_cached_instance(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
