"""
Unit Tests for settings
"""
import pytest

from codestream.core.config import Settings, parse_bool, settings


class TestParseBool:

    @pytest.mark.parametrize("value", ["1", "true", "TRUE", " yes ", "on", True, 1])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "false", "off", "", "nope", False, 0, None])
    def test_falsy(self, value):
        assert parse_bool(value) is False


class TestSettings:
    """Test settings loading and validation"""

    def test_testing_environment(self):
        assert settings.ENVIRONMENT == "testing"
        assert not settings.is_production
        assert settings.COMPLETION_STAGGER_ENABLED is False

    def test_defaults(self):
        fresh = Settings(_env_file=None)
        assert fresh.STREAM_MIN_DETECT_CHARS == 50
        assert fresh.STREAM_PROGRESS_INTERVAL_MS == 100
        assert fresh.STREAM_DEFAULT_EXPECTED_LINES == 100
        assert fresh.CONTINUATION_MAX_BATCHES == 5
        assert fresh.CONTINUATION_MAX_RETRIES == 3

    def test_source_root_is_stripped(self):
        assert Settings(_env_file=None, SOURCE_ROOT="/app/").SOURCE_ROOT == "app"
        assert Settings(_env_file=None, SOURCE_ROOT=" / ").SOURCE_ROOT == "src"

    def test_flag_strings(self):
        assert Settings(_env_file=None, DEBUG="on").DEBUG is True
        assert Settings(_env_file=None, COMPLETION_STAGGER_ENABLED="0").COMPLETION_STAGGER_ENABLED is False

    def test_is_production(self):
        assert Settings(_env_file=None, ENVIRONMENT="production").is_production
