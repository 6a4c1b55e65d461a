from pathlib import Path

import pytest

from coco.config import DEFAULT_EXTENSIONS, load_settings
from coco.errors import ConfigError


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings.api_key is None
        assert settings.confidence_threshold == 0.7
        assert settings.analysis_delay_ms == 500
        assert settings.auto_suggestions is True
        assert settings.extensions == DEFAULT_EXTENSIONS
        assert settings.sessions_dir == Path.home() / ".coco" / "sessions"

    def test_environment_values_are_parsed(self):
        settings = load_settings(environ={
            "GEMINI_API_KEY": "k-123",
            "COCO_LOG_LEVEL": "DEBUG",
            "COCO_AUTO_SUGGESTIONS": "false",
            "COCO_CONFIDENCE_THRESHOLD": "0.4",
            "COCO_ANALYSIS_DELAY_MS": "250",
            "COCO_MAX_FILE_SIZE": "2048",
            "COCO_HOME": "/tmp/coco-home",
        })
        assert settings.api_key == "k-123"
        assert settings.log_level == "debug"
        assert settings.auto_suggestions is False
        assert settings.confidence_threshold == 0.4
        assert settings.analysis_delay_ms == 250
        assert settings.max_file_size == 2048
        assert settings.sessions_dir == Path("/tmp/coco-home/sessions")

    def test_extensions_from_comma_list(self):
        settings = load_settings(environ={"COCO_EXTENSIONS": "py, .rs ,go"})
        assert settings.extensions == (".py", ".rs", ".go")

    def test_empty_variables_fall_back_to_defaults(self):
        settings = load_settings(environ={"COCO_ANALYSIS_DELAY_MS": ""})
        assert settings.analysis_delay_ms == 500

    def test_overrides_win_over_environment(self):
        settings = load_settings(environ={"COCO_LOG_LEVEL": "error"}, log_level="trace")
        assert settings.log_level == "trace"

    def test_none_overrides_are_ignored(self):
        settings = load_settings(environ={"COCO_LOG_LEVEL": "error"}, log_level=None)
        assert settings.log_level == "error"

    @pytest.mark.parametrize("var, value", [
        ("COCO_CONFIDENCE_THRESHOLD", "1.5"),
        ("COCO_MAX_FILE_SIZE", "0"),
        ("COCO_ANALYSIS_DELAY_MS", "soon"),
        ("COCO_LOG_LEVEL", "loud"),
    ])
    def test_invalid_values_raise_config_error(self, var, value):
        with pytest.raises(ConfigError, match="invalid configuration"):
            load_settings(environ={var: value})


class TestCredential:
    def test_missing_key_is_a_config_error(self):
        with pytest.raises(ConfigError, match="GEMINI_API_KEY"):
            load_settings(environ={}).require_credential()

    def test_blank_key_counts_as_missing(self):
        assert load_settings(environ={"GEMINI_API_KEY": "   "}).api_key is None

    def test_present_key_is_returned(self):
        assert load_settings(environ={"GEMINI_API_KEY": "abc"}).require_credential() == "abc"
