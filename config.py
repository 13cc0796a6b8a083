import os
import uuid
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = os.path.join("log", "app.log")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning(f"Ignoring invalid boolean for {name}: {value!r}, using {default}")
    return default


def _env_int(name, default, minimum=1):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid integer for {name}: {value!r}, using {default}")
        return default
    if parsed < minimum:
        logger.warning(f"{name}={parsed} is below {minimum}, using {default}")
        return default
    return parsed


def get_settings():
    """Read engine settings from environment variables, loading a .env file first if present"""
    load_dotenv()
    return {
        "default_dimension": _env_int("RCM_DEFAULT_DIMENSION", 5),
        "cumulative_repair": _env_bool("RCM_CUMULATIVE_REPAIR", True),
        "max_repair_passes": _env_int("RCM_MAX_REPAIR_PASSES", 6),
        "max_dimension": _env_int("RCM_MAX_DIMENSION", 10),
        "debug_dumps": _env_bool("RCM_DEBUG_DUMPS", False),
        "log_level": os.environ.get("RCM_LOG_LEVEL", "INFO").upper(),
        "log_file": os.environ.get("RCM_LOG_FILE", DEFAULT_LOG_FILE),
    }


def configure_app(app, settings=None):
    """Configure Flask application with necessary settings"""
    settings = {**get_settings(), **(settings or {})}

    # Set secret key for session security
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_key_' + str(uuid.uuid4()))
    app.config['RCM_SETTINGS'] = dict(settings)

    logger.info(
        "Application configured: default size %sx%s, max size %sx%s, cumulative repair %s, max passes %s",
        settings["default_dimension"], settings["default_dimension"],
        settings["max_dimension"], settings["max_dimension"],
        settings["cumulative_repair"], settings["max_repair_passes"],
    )
    logger.debug("Debug dumps enabled: %s", settings["debug_dumps"])

    return app
