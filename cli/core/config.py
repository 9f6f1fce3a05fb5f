# cli/core/config.py
from pathlib import Path
import os

# Backend URL
BASE_URL = os.environ.get("UBAA_URL", "http://localhost:8000").rstrip("/")

# Request timeouts in seconds; the backend may itself wait on the SSO
LOGIN_TIMEOUT = 60
DEFAULT_TIMEOUT = 15

# Folder where the CLI keeps local data (token, etc.)
APP_DIR = Path(os.environ.get("UBAA_HOME", str(Path.home() / ".ubaa")))

# File holding the session token
SESSION_FILE = APP_DIR / "session.json"
