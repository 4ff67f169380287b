"""
Unit tests for environment-based configuration.
"""

import logging
from unittest.mock import patch

import pytest

from config.settings import AppConfig, HealthCheckFilter, parse_watch_interval


class TestParseWatchInterval:
    """Tests for parse_watch_interval"""

    @pytest.mark.parametrize("value, expected", [
        ("60s", 60.0),
        ("5m", 300.0),
        ("1h30m", 5400.0),
        ("500ms", 0.5),
    ])
    def test_valid_values(self, value, expected):
        assert parse_watch_interval(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "soon", "60", "0s"])
    def test_invalid_values_fall_back_to_default(self, value):
        assert parse_watch_interval(value) == 60.0

    def test_invalid_value_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            parse_watch_interval("every minute")
        assert "DECKHAND_WATCH_INTERVAL" in caplog.text


class TestAppConfig:
    """Tests for AppConfig"""

    def test_defaults(self):
        with patch.dict('os.environ', {}, clear=True):
            config = AppConfig()

        assert config.PORT == 8080
        assert config.BASE_DOMAIN == "localhost"
        assert config.WATCH_INTERVAL == 60.0
        assert config.HEALTH_TIMEOUT == 60
        assert config.SSH_KEY_PATH == ""
        assert config.validate()

    def test_reads_environment(self, tmp_path):
        env = {
            'DECKHAND_PORT': '9000',
            'DECKHAND_DATA_DIR': str(tmp_path),
            'DECKHAND_BASE_DOMAIN': 'apps.example.com',
            'DECKHAND_SSH_KEY_PATH': '/keys/id_ed25519',
            'DECKHAND_WATCH_INTERVAL': '2m',
            'DECKHAND_HEALTH_TIMEOUT': '90',
        }
        with patch.dict('os.environ', env, clear=True):
            config = AppConfig()

        assert config.PORT == 9000
        assert config.DATABASE_PATH == str(tmp_path / 'deckhand.db')
        assert config.BASE_DOMAIN == 'apps.example.com'
        assert config.SSH_KEY_PATH == '/keys/id_ed25519'
        assert config.WATCH_INTERVAL == 120.0
        assert config.HEALTH_TIMEOUT == 90

    def test_invalid_integer_uses_default(self):
        with patch.dict('os.environ', {'DECKHAND_PORT': 'eighty'}, clear=True):
            assert AppConfig().PORT == 8080

    def test_validate_rejects_bad_port(self):
        with patch.dict('os.environ', {'DECKHAND_PORT': '70000'}, clear=True):
            config = AppConfig()
        with pytest.raises(ValueError, match="Invalid port"):
            config.validate()


class TestHealthCheckFilter:
    """Tests for HealthCheckFilter"""

    def _record(self, message):
        return logging.LogRecord("uvicorn.access", logging.INFO, __file__, 1, message, None, None)

    def test_drops_successful_health_checks(self):
        assert not HealthCheckFilter().filter(self._record('127.0.0.1:5000 - "GET /health HTTP/1.1" 200'))

    def test_drops_project_polling(self):
        record = self._record('127.0.0.1:5000 - "GET /api/projects HTTP/1.1" 200')
        assert not HealthCheckFilter().filter(record)

    def test_keeps_errors_and_mutations(self):
        f = HealthCheckFilter()
        assert f.filter(self._record('127.0.0.1:5000 - "GET /health HTTP/1.1" 503'))
        assert f.filter(self._record('127.0.0.1:5000 - "POST /api/projects/abc/deploy HTTP/1.1" 202'))
