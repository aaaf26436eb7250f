"""
Wagate Backend Settings
Environment variable management with backward compatibility for legacy names.
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def get_env(new_var: str, old_var: Optional[str] = None, default: Optional[str] = None) -> str:
    """
    Get environment variable with backward compatibility.

    Tries new variable name first (WGT_*), falls back to old name if provided,
    then returns default if neither is set.

    Args:
        new_var: New WGT_* prefixed variable name
        old_var: Legacy variable name (for backward compatibility)
        default: Default value if neither variable is set

    Returns:
        Environment variable value or default
    """
    # Try new variable first
    value = os.getenv(new_var)
    if value is not None:
        return value

    # Fall back to old variable if provided
    if old_var is not None:
        value = os.getenv(old_var)
        if value is not None:
            return value

    # Return default
    return default if default is not None else ""


# Application Configuration
APP_HOST = get_env("WGT_APP_HOST", "APP_HOST", "127.0.0.1")
APP_PORT = int(get_env("WGT_APP_PORT", "PORT", "3000"))

# CORS: "*" or a comma-separated list of origins
CORS_ORIGIN = get_env("WGT_CORS_ORIGIN", "CORS_ORIGIN", "*")

# Storage Paths
# SESSION_DIR holds sessions.json, webhook-configs.json and one credential
# directory per session
SESSION_DIR = get_env("WGT_SESSION_DIR", "SESSION_DIR", "./sessions")
DATA_DIR = get_env("WGT_DATA_DIR", "DATA_DIR", "./data")
DB_PATH = get_env("WGT_DB_PATH", None, os.path.join(DATA_DIR, "gateway.db"))
MEDIA_DIR = get_env("WGT_MEDIA_DIR", "MEDIA_DIR", "./media")

# Logging
LOG_FILE = get_env("WGT_LOG_FILE", "LOG_FILE", "logs/wagate.log")
LOG_LEVEL = get_env("WGT_LOG_LEVEL", "LOG_LEVEL", "INFO")

# WhatsApp bridge sidecar (protocol client)
BRIDGE_URL = get_env("WGT_BRIDGE_URL", "BRIDGE_URL", "http://127.0.0.1:8080")
BRIDGE_API_SECRET = get_env("WGT_BRIDGE_API_SECRET", "BRIDGE_API_SECRET", "")

# Session reconnection
MAX_RECONNECT_RETRIES = int(get_env("WGT_MAX_RECONNECT_RETRIES", None, "5"))

# Webhook delivery
WEBHOOK_TIMEOUT_SECONDS = float(get_env("WGT_WEBHOOK_TIMEOUT_SECONDS", None, "10"))
WEBHOOK_USER_AGENT = "Wagate-Webhook/1.0"

# Service Identification
SERVICE_NAME = "wagate"
SERVICE_VERSION = "1.0.0"


def get_cors_origins() -> list:
    """Parse CORS_ORIGIN into the list CORSMiddleware expects."""
    if CORS_ORIGIN.strip() == "*":
        return ["*"]
    return [origin.strip() for origin in CORS_ORIGIN.split(",") if origin.strip()]


# Create log directory if it doesn't exist
log_dir = Path(LOG_FILE).parent
log_dir.mkdir(parents=True, exist_ok=True)
