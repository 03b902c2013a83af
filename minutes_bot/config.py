"""
Configuration management with three-tier precedence system:
1. Default values from codebase
2. Environment variables from .env
3. Explicit overrides passed by the caller (CLI flags, tests)

Precedence: Overrides > Environment Variables > Defaults

Values are resolved once into a ``BotConfig`` which is passed explicitly to
the workflow, listener and scheduler. Nothing reads configuration from
module-level state after startup.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


class ConfigManager:
    """Manages configuration with three-tier precedence."""

    # Default values (Tier 1 - Codebase defaults)
    DEFAULTS = {
        "BOT_EMAIL": "minutes-bot@example.com",
        "RELEASE": "false",
        "REGISTRATION_URL": "http://localhost:5001/enroll",
        "POLL_INTERVAL": "10",
        "TASKS_DIR": "server_tasks",
        "ACCEPTANCE_THRESHOLD": "0.5",
        "MIN_WINDOW_MS": "1000",
        "MIN_ENROLLMENT_MS": "5000",
        "SILENCE_THRESHOLD": "0.001",
        "TRANSCRIPTION_WORKERS": "4",
        "ENROLLMENT_WORKERS": "4",
        "SEGMENT_TIMEOUT": "120",
        "DOWNLOAD_TIMEOUT": "300",
        "DIAL_TIMEOUT": "14400",
        "WHISPER_MODEL": "base",
        "LANGUAGE": "",
        "DIARIZATION_MODEL": "pyannote/speaker-diarization-3.1",
        "EMBEDDING_MODEL": "pyannote/embedding",
        "HUGGINGFACE_TOKEN": "",
        "RECORDING_BASE_URL": "",
        "SMTP_HOST": "localhost",
        "SMTP_PORT": "25",
        "SMTP_USER": "",
        "SMTP_PASSWORD": "",
        "LOG_LEVEL": "INFO",
        "LOG_FILE": "",
    }

    @staticmethod
    def get(key: str, override: Optional[Any] = None) -> Any:
        """
        Get configuration value with three-tier precedence.

        Args:
            key: Configuration key
            override: Explicit value (highest priority)

        Returns:
            Configuration value from highest priority source
        """
        if override is not None and override != "":
            return override

        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            return env_value

        return ConfigManager.DEFAULTS.get(key, "")

    @staticmethod
    def get_display_value(key: str, override: Optional[Any] = None) -> tuple[Any, str]:
        """
        Get configuration value and its source.

        Returns:
            Tuple of (value, source) where source is 'override', 'env', or 'default'
        """
        if override is not None and override != "":
            return override, "override"

        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            return env_value, "env"

        return ConfigManager.DEFAULTS.get(key, ""), "default"

    @staticmethod
    def get_bool(key: str, override: Optional[Any] = None) -> bool:
        value = ConfigManager.get(key, override)
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BotConfig:
    """Resolved settings for one bot process."""

    bot_email: str = "minutes-bot@example.com"
    release: bool = False
    registration_url: str = "http://localhost:5001/enroll"
    poll_interval: float = 10.0
    tasks_dir: str = "server_tasks"

    acceptance_threshold: float = 0.5
    min_window_ms: int = 1000
    min_enrollment_ms: int = 5000
    silence_threshold: float = 0.001

    transcription_workers: int = 4
    enrollment_workers: int = 4
    segment_timeout: float = 120.0
    download_timeout: float = 300.0
    dial_timeout: float = 14400.0

    whisper_model: str = "base"
    language: Optional[str] = None
    diarization_model: str = "pyannote/speaker-diarization-3.1"
    embedding_model: str = "pyannote/embedding"
    huggingface_token: str = ""

    recording_base_url: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""

    log_level: str = "INFO"
    log_file: str = ""

    @classmethod
    def from_env(cls, **overrides: Any) -> "BotConfig":
        """
        Build a config from overrides, environment variables and defaults.

        Args:
            **overrides: Field values taking precedence over the environment,
                keyed by field name (e.g. ``bot_email="bot@corp.com"``)
        """

        def value(name: str) -> Any:
            return ConfigManager.get(name.upper(), overrides.get(name))

        return cls(
            bot_email=value("bot_email"),
            release=ConfigManager.get_bool("RELEASE", overrides.get("release")),
            registration_url=value("registration_url"),
            poll_interval=float(value("poll_interval")),
            tasks_dir=str(value("tasks_dir")),
            acceptance_threshold=float(value("acceptance_threshold")),
            min_window_ms=int(value("min_window_ms")),
            min_enrollment_ms=int(value("min_enrollment_ms")),
            silence_threshold=float(value("silence_threshold")),
            transcription_workers=int(value("transcription_workers")),
            enrollment_workers=int(value("enrollment_workers")),
            segment_timeout=float(value("segment_timeout")),
            download_timeout=float(value("download_timeout")),
            dial_timeout=float(value("dial_timeout")),
            whisper_model=value("whisper_model"),
            language=value("language") or None,
            diarization_model=value("diarization_model"),
            embedding_model=value("embedding_model"),
            huggingface_token=value("huggingface_token"),
            recording_base_url=value("recording_base_url"),
            smtp_host=value("smtp_host"),
            smtp_port=int(value("smtp_port")),
            smtp_user=value("smtp_user"),
            smtp_password=value("smtp_password"),
            log_level=str(value("log_level")).upper(),
            log_file=value("log_file"),
        )


def setup_logging(level: str = "INFO", log_file: str = "") -> logging.Logger:
    """
    Configure root logging for the bot process.

    Logs go to stdout; when ``log_file`` is set, records are also written there
    and errors are duplicated into ``<log_file stem>_errors.log``.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        error_handler = logging.FileHandler(log_path.with_name(f"{log_path.stem}_errors.log"), encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
        handlers.append(error_handler)

    log_format = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(log_format)

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=handlers, force=True)

    # Suppress noisy third-party loggers
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger("minutes_bot")
