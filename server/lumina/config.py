"""Configuration helpers for the studio service."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def _env_api_key() -> Optional[str]:
    # API_KEY is the name the hosted studio template injects.
    value = (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()
    return value or None


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once per process; tests build their own instances or pass
    explicit arguments to the services instead of mutating the environment.
    """

    gemini_api_key: Optional[str] = _env_api_key()
    gemini_api_base: str = os.getenv(
        "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
    )
    veo_model: str = os.getenv("VEO_MODEL", "veo-3.1-fast-generate-preview")
    veo_resolution: str = os.getenv("VEO_RESOLUTION", "1080p")
    veo_aspect_ratio: str = os.getenv("VEO_ASPECT_RATIO", "16:9")
    veo_number_of_videos: int = int(os.getenv("VEO_NUMBER_OF_VIDEOS", "1"))
    veo_request_timeout_seconds: float = float(os.getenv("VEO_REQUEST_TIMEOUT_SECONDS", "30"))
    veo_download_timeout_seconds: float = float(os.getenv("VEO_DOWNLOAD_TIMEOUT_SECONDS", "120"))
    # Fixed cadence between status checks; the API docs recommend 10 seconds.
    veo_poll_interval_seconds: float = float(os.getenv("VEO_POLL_INTERVAL_SECONDS", "10"))
    # 0 disables the attempt bound; the job deadline below still applies.
    veo_max_poll_attempts: int = int(os.getenv("VEO_MAX_POLL_ATTEMPTS", "90"))
    veo_job_timeout_seconds: float = float(os.getenv("VEO_JOB_TIMEOUT_SECONDS", "900"))
    # Extra attempts for a single failed status check before the flow aborts.
    veo_poll_transport_retries: int = int(os.getenv("VEO_POLL_TRANSPORT_RETRIES", "0"))

    # Upload guardrails
    max_image_bytes: int = int(os.getenv("STUDIO_MAX_IMAGE_BYTES", str(20 * 1024 * 1024)))
    max_audio_bytes: int = int(os.getenv("STUDIO_MAX_AUDIO_BYTES", str(50 * 1024 * 1024)))
    # Downloaded videos live here until released; defaults to the system temp dir.
    asset_dir: Optional[str] = os.getenv("STUDIO_ASSET_DIR")
    max_log_entries: int = int(os.getenv("STUDIO_MAX_LOG_ENTRIES", "200"))
    prompt_description: str = os.getenv(
        "STUDIO_PROMPT_DESCRIPTION",
        "The person is delivering a high-end corporate presentation.",
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    redact_secrets_in_logs: bool = _env_bool("REDACT_SECRETS_IN_LOGS", True)

    @property
    def asset_path(self) -> Optional[Path]:
        if not self.asset_dir:
            return None
        return Path(self.asset_dir).expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()


_KEY_PARAM_RE = re.compile(r"([?&]key=)[^&\s'\"]+")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def redact(text: str, *secrets: Optional[str]) -> str:
    """Strip `key=` query values and any given secret values from text."""
    redacted = _KEY_PARAM_RE.sub(r"\1***", text)
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "***")
    return redacted


class SecretRedactingFilter(logging.Filter):
    """Rewrite log records so API keys never reach a handler."""

    def __init__(self, *secrets: Optional[str]) -> None:
        super().__init__()
        self._secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message, *self._secrets)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """Install the studio log format and the secret redaction filter on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel((level or settings.log_level).upper())
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    if settings.redact_secrets_in_logs:
        for handler in root_logger.handlers:
            if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
                handler.addFilter(SecretRedactingFilter(settings.gemini_api_key))
    # httpx logs every request URL at INFO, including download links.
    logging.getLogger("httpx").setLevel(logging.WARNING)
