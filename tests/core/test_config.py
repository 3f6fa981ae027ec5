"""Tests for settings loading."""

import pytest

from video_optimization.core.config import ConfigurationError, load_settings

REQUIRED = {
    "SERVER_URL": "https://app.example.com",
    "R2_ENDPOINT": "https://account.r2.cloudflarestorage.com",
    "R2_BUCKET": "media",
    "R2_ACCESS_KEY_ID": "access",
    "R2_SECRET_ACCESS_KEY": "secret",
    "VIDEO_OPTIMIZATION_API_KEY": "right",
}


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in REQUIRED:
        monkeypatch.delenv(name, raising=False)
    for name in ("APP_ENV", "PORT", "R2_REGION", "TOOL_TIMEOUT_SECONDS", "RATE_LIMIT_BURST"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:

    def test_loads_required_and_defaults(self, clean_env) -> None:
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)

        settings = load_settings()

        assert settings.R2_BUCKET == "media"
        assert settings.R2_REGION == "auto"
        assert settings.PORT == 8080
        assert settings.TOOL_TIMEOUT_SECONDS == 1800
        assert settings.RATE_LIMIT_PER_SECOND == 1.0
        assert settings.RATE_LIMIT_BURST == 5
        assert settings.FFMPEG_PATH == "ffmpeg"
        assert settings.is_production is False

    def test_missing_variables_are_reported(self, clean_env) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert set(exc_info.value.missing) == set(REQUIRED)

    def test_empty_value_counts_as_missing(self, clean_env) -> None:
        for name, value in REQUIRED.items():
            clean_env.setenv(name, value)
        clean_env.setenv("VIDEO_OPTIMIZATION_API_KEY", "")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert exc_info.value.missing == ["VIDEO_OPTIMIZATION_API_KEY"]

    def test_env_file_is_read(self, clean_env, tmp_path) -> None:
        lines = [f"{name}={value}" for name, value in REQUIRED.items()]
        lines.append("APP_ENV=production")
        (tmp_path / ".env").write_text("\n".join(lines) + "\n")

        settings = load_settings()

        assert settings.SERVER_URL == "https://app.example.com"
        assert settings.is_production is True

    def test_overrides(self, clean_env) -> None:
        settings = load_settings(**REQUIRED, PORT=9090, RATE_LIMIT_BURST=10)

        assert settings.PORT == 9090
        assert settings.RATE_LIMIT_BURST == 10
