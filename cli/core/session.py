# cli/core/session.py
import json
from typing import Optional

from . import config


def save_token(access_token: str, username: Optional[str] = None) -> None:
    """
    Stores the access_token in the session file.
    """
    config.APP_DIR.mkdir(parents=True, exist_ok=True)
    data = {"access_token": access_token, "username": username}
    with open(config.SESSION_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f)


def _load() -> dict:
    if not config.SESSION_FILE.exists():
        return {}
    try:
        with open(config.SESSION_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        # An unreadable file means no usable session
        return {}
    return data if isinstance(data, dict) else {}


def load_token() -> Optional[str]:
    """
    Reads the access_token from the session file, or None.
    """
    return _load().get("access_token")


def load_username() -> Optional[str]:
    return _load().get("username")


def is_logged_in() -> bool:
    return load_token() is not None


def clear_token() -> None:
    """
    Deletes the session file, ending the local session.
    """
    if config.SESSION_FILE.exists():
        config.SESSION_FILE.unlink()
