"""
Configuration module for CXChat application.
Stores all application settings and sensitive information.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration class."""

    # JWT Configuration
    JWT_SECRET = os.environ.get("JWT_SECRET", "default-secret-key-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRE_MINUTES = int(os.environ.get("JWT_EXPIRE_MINUTES", "60"))
    AUTH_COOKIE_NAME = os.environ.get("CXCHAT_AUTH_COOKIE", "token")

    # Server Configuration
    DEFAULT_HOST = os.environ.get("CXCHAT_HOST", "localhost")
    DEFAULT_SERVER_PORT = int(os.environ.get("CXCHAT_WS_PORT", "8765"))
    DEFAULT_API_PORT = int(os.environ.get("CXCHAT_API_PORT", "8766"))

    # Frontend origin allowed by CORS
    CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:5173")

    # SQLite database (users, messages, notifications)
    SQLITE_DB_FILE = os.environ.get("CXCHAT_DB", "cxchat.db")

    # Fan-out
    NOTIFICATION_SNIPPET_LENGTH = 100
    SEND_TIMEOUT = float(os.environ.get("CXCHAT_SEND_TIMEOUT", "5.0"))
    SETUP_TIMEOUT = float(os.environ.get("CXCHAT_SETUP_TIMEOUT", "30.0"))
    HEALTH_CHECK_INTERVAL = int(os.environ.get("CXCHAT_HEALTH_CHECK_INTERVAL", "30"))
    ECHO_TO_SENDER = _env_bool("CXCHAT_ECHO_TO_SENDER", True)

    # Logging environment (development, production, testing)
    LOG_ENV = os.environ.get("CXCHAT_ENV", "development")


# Create config instance
config = Config()
