"""
Unit tests for environment-driven settings.
"""

from pathlib import Path

import pytest

from vocational_backend.config import BASE_DIR, load_settings

ENV_VARS = [
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_TEMPERATURE",
    "OUTPUT_CONTRACT",
    "HISTORY_WINDOW",
    "STORE_PATH",
    "SUBMISSIONS_PATH",
    "CATALOG_PATH",
    "HOST",
    "PORT",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_defaults(self, clean_env):
        settings = load_settings()

        assert settings.gemini_api_key == ""
        assert settings.gemini_model == "gemini-1.5-flash"
        assert settings.output_contract == "strict"
        assert settings.history_window == 10
        assert settings.port == 5000
        assert settings.store_path == BASE_DIR / "data" / "vocational_store.json"
        assert settings.catalog_path == BASE_DIR / "resources" / "careers.json"
        assert settings.prompts_dir == BASE_DIR / "prompts"

    def test_overrides(self, clean_env, tmp_path):
        clean_env.setenv("OUTPUT_CONTRACT", "FREE_TEXT")
        clean_env.setenv("PORT", "3000")
        clean_env.setenv("STORE_PATH", str(tmp_path / "store.json"))
        clean_env.setenv("SUBMISSIONS_PATH", ":memory:")
        clean_env.setenv("HISTORY_WINDOW", "6")

        settings = load_settings()

        assert settings.output_contract == "free_text"
        assert settings.port == 3000
        assert settings.store_path == Path(tmp_path / "store.json")
        assert settings.submissions_path is None
        assert settings.history_window == 6

    def test_memory_store(self, clean_env):
        clean_env.setenv("STORE_PATH", ":memory:")

        assert load_settings().store_path is None

    @pytest.mark.parametrize(
        "name, value",
        [("OUTPUT_CONTRACT", "xml"), ("HISTORY_WINDOW", "0"), ("PORT", "abc")],
    )
    def test_invalid_values_raise(self, clean_env, name, value):
        clean_env.setenv(name, value)

        with pytest.raises(ValueError):
            load_settings()
