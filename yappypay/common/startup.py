"""Startup-time helpers for safe config logging."""

from yappypay.common.config import YappySettings
from yappypay.common.logging import logger

SECRET_MARKERS = ("key", "secret", "password", "token", "fallback_config")


def redacted_settings(config: YappySettings, fields: list[str]) -> dict[str, str]:
    """Return selected settings with secret-like names replaced by a marker."""

    view = {}
    for name in fields:
        value = getattr(config, name, None)
        if value is None:
            view[name] = "<unset>"
        elif any(marker in name for marker in SECRET_MARKERS) and name != "storage_key_file":
            view[name] = "<redacted>"
        else:
            view[name] = str(value)
    return view


def log_startup_config(config: YappySettings, fields: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    view = {"service": config.service_name, **redacted_settings(config, fields)}
    logger.info("startup_config=%s", view)
