"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _require(name: str) -> str:
    val = os.getenv(name)
    if not val:
        raise RuntimeError(f"Required environment variable {name} is not set")
    return val


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys / access
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
ACCESS_PASSWORD: str = os.getenv("ACCESS_PASSWORD", "")

# Models
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")

# Generation
IDENTITY_STRATEGY: str = os.getenv("IDENTITY_STRATEGY", "positional")
HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "50"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "smartdraw.db"


def server_model_config() -> dict[str, str]:
    """Return the server-side model config used for password-authorized requests.

    Raises RuntimeError when the server has no API key configured.
    """
    return {
        "name": "server",
        "api_key": _require("GEMINI_API_KEY"),
        "model": GEMINI_MODEL,
    }
