"""Simple runtime configuration for the todo app.

Control flags are read from environment variables to allow toggling in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# Canonical application timezone (IANA). All due-date arithmetic, day/week
# boundaries and serialized timestamps use this zone, never the machine's
# local time.
DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'Asia/Singapore')

# Minimum interval between two reminders for the same todo.
NOTIFICATION_COOLDOWN_MINUTES = _int_env('NOTIFICATION_COOLDOWN_MINUTES', 60)

# How often the browser page polls /api/notifications/check.
NOTIFICATION_POLL_SECONDS = _int_env('NOTIFICATION_POLL_SECONDS', 60)

# When true, the app is considered to be running in development mode.
# Anonymous requests are then served as DEV_USERNAME (created at startup).
DEV_MODE = _trueish(os.getenv('DEV_MODE', '0'))
DEV_USERNAME = os.getenv('DEV_USERNAME', 'dev-user')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()


# Optional local overrides: define variables in todo_app/local_config.py to
# override the defaults above without changing versioned config.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    # No local overrides present; proceed with defaults.
    pass
