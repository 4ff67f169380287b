"""
Configuration Management for Deckhand
Centralizes all environment-based configuration and settings
"""

import os
import re
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from utils.duration_parser import parse_duration

logger = logging.getLogger(__name__)

_PROJECT_POLL_PATTERN = re.compile(r'"GET /api/projects(/[A-Za-z0-9-]+)? HTTP')

DEFAULT_WATCH_INTERVAL_SECONDS = 60.0
DEFAULT_HEALTH_TIMEOUT_SECONDS = 60


class HealthCheckFilter(logging.Filter):
    """Filter out health check and routine status polling requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200' in message or '200' in str(getattr(record, 'args', '')):
            if '/health' in message:
                return False
            # Dashboard polls project status every few seconds
            if _PROJECT_POLL_PATTERN.search(message):
                return False
        return True


def setup_logging(data_dir: Optional[str] = None, level: str = 'INFO'):
    """Configure application logging with rotation"""
    from .paths import DATA_DIR

    # Create logs directory with secure permissions
    log_dir = os.path.join(data_dir or DATA_DIR, 'logs')
    os.makedirs(log_dir, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to prevent file descriptor leaks
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'deckhand.log'),
        maxBytes=10*1024*1024,
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())


def parse_watch_interval(value: Optional[str]) -> float:
    """
    Parse the watcher interval, falling back to 60s on bad input.

    Args:
        value: Duration string such as "60s" or "5m" (None/empty = default)

    Returns:
        Interval in seconds (always > 0)
    """
    if not value:
        return DEFAULT_WATCH_INTERVAL_SECONDS

    try:
        seconds = parse_duration(value)
    except ValueError as e:
        logger.warning(f"Invalid DECKHAND_WATCH_INTERVAL '{value}' ({e}), using default 60s")
        return DEFAULT_WATCH_INTERVAL_SECONDS

    if seconds <= 0:
        logger.warning(f"DECKHAND_WATCH_INTERVAL must be positive, got '{value}', using default 60s")
        return DEFAULT_WATCH_INTERVAL_SECONDS

    return seconds


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', using default {default}")
        return default


class AppConfig:
    """
    Main application configuration.

    Values are read from the environment when the instance is created, so
    tests can build a fresh config after patching os.environ.
    """

    def __init__(self):
        from .paths import DATA_DIR, DEPLOYMENTS_DIR

        # Server settings
        self.HOST = os.getenv('DECKHAND_HOST', '0.0.0.0')
        self.PORT = _int_env('DECKHAND_PORT', 8080)

        # Storage
        self.DATA_DIR = os.getenv('DECKHAND_DATA_DIR', DATA_DIR)
        self.DEPLOYMENTS_DIR = os.getenv('DECKHAND_DEPLOYMENTS_DIR', DEPLOYMENTS_DIR)
        self.DATABASE_PATH = os.path.join(self.DATA_DIR, 'deckhand.db')

        # Routing
        self.BASE_DOMAIN = os.getenv('DECKHAND_BASE_DOMAIN', 'localhost')

        # Git
        self.SSH_KEY_PATH = os.getenv('DECKHAND_SSH_KEY_PATH', '')

        # Orchestration timing
        self.WATCH_INTERVAL = parse_watch_interval(os.getenv('DECKHAND_WATCH_INTERVAL', '60s'))
        self.HEALTH_TIMEOUT = _int_env('DECKHAND_HEALTH_TIMEOUT', DEFAULT_HEALTH_TIMEOUT_SECONDS)

        # Logging
        self.LOG_LEVEL = os.getenv('DECKHAND_LOG_LEVEL', 'INFO')

    def validate(self):
        """Validate configuration"""
        if self.PORT < 1 or self.PORT > 65535:
            raise ValueError(f"Invalid port: {self.PORT}")

        if self.HEALTH_TIMEOUT < 1:
            raise ValueError(f"Health timeout must be at least 1 second: {self.HEALTH_TIMEOUT}")

        return True

    def log_summary(self):
        """Log the effective configuration (without secrets)"""
        logger.info("Configuration:")
        logger.info(f"  Listen Address: {self.HOST}:{self.PORT}")
        logger.info(f"  Data Directory: {self.DATA_DIR}")
        logger.info(f"  Deployments Directory: {self.DEPLOYMENTS_DIR}")
        logger.info(f"  Base Domain: {self.BASE_DOMAIN}")
        logger.info(f"  SSH Key: {self.SSH_KEY_PATH or '(none)'}")
        logger.info(f"  Watch Interval: {self.WATCH_INTERVAL:g}s")
        logger.info(f"  Health Timeout: {self.HEALTH_TIMEOUT}s")
