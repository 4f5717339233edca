import os
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/callit.db")

# Security
SESSION_COOKIE_NAME = "callit_session"
SESSION_EXPIRE_DAYS = int(os.getenv("SESSION_EXPIRE_DAYS", "30"))

# Admin credentials (in production, use environment variables)
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@callit.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "password")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Templates
TEMPLATES_DIR = BASE_DIR / "callit" / "templates"

# Display name shown when a profile has none
DEFAULT_DISPLAY_NAME = "Anonymous"

# Icons a category may carry
CATEGORY_ICONS = (
    "AlertCircle", "ArrowRight", "Check", "Circle", "Heart", "Star", "Trophy",
    "Target", "Zap", "Calendar", "Flag", "Globe", "Home", "Music", "Settings",
    "User", "Video", "Mail", "Map",
)
