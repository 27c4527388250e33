"""
Application configuration.
Settings come from environment variables, optionally loaded from a .env file.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Config:
    BASE_DIR = Path(__file__).parent

    # Storage
    DATABASE_PATH = os.getenv("DATABASE_PATH", str(BASE_DIR / "tskr.db"))

    # Day boundaries for categorization are computed in this timezone
    TIMEZONE = os.getenv("TIMEZONE", "UTC")

    # Authentication is handled upstream; requests without an owner header use this one
    DEFAULT_OWNER_ID = os.getenv("DEFAULT_OWNER_ID", "local")

    DEFAULT_TAG_COLOR = os.getenv("DEFAULT_TAG_COLOR", "#3B82F6")

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
        if origin.strip()
    ]

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
