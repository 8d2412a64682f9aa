"""
Shared credential loader.

Priority: environment variables → .env (python-dotenv) → secrets.toml.
"""

import os
import tomllib
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent
SECRETS_PATH = PROJECT_ROOT / "config" / "secrets.toml"


def load_credentials(secrets_path: Path | None = None) -> dict:
    """Load credentials from env vars, falling back to secrets.toml.

    Returns:
        Dict with all credential keys. Optional keys may be None.
    """
    load_dotenv()

    secrets = {}
    secrets_path = secrets_path or SECRETS_PATH
    if secrets_path.exists():
        with open(secrets_path, "rb") as f:
            secrets = tomllib.load(f)

    def _get(key: str, required: bool = False, default: str | None = None) -> str | None:
        val = os.environ.get(key) or secrets.get(key) or default
        if required and not val:
            raise ValueError(f"Missing required credential: {key}. "
                             f"Set via environment, .env or secrets.toml")
        return val

    return {
        # Required
        "LEADS_DATABASE_URL": _get("LEADS_DATABASE_URL", required=True),
        # Optional: local file databases need no token
        "LEADS_AUTH_TOKEN": _get("LEADS_AUTH_TOKEN"),
        # Optional: without a key reveals fail and searches serve cache only
        "APOLLO_API_KEY": _get("APOLLO_API_KEY") or _get("APOLLO_IO_API_KEY"),
        "APOLLO_API_BASE_URL": _get("APOLLO_API_BASE_URL"),
        "APOLLO_WEBHOOK_URL": _get("APOLLO_WEBHOOK_URL"),
        "DEFAULT_SCHEMA": _get("DEFAULT_SCHEMA", default="main"),
        "APP_ENV": _get("APP_ENV", default="development"),
        "DEV_TENANT_ID": _get("DEV_TENANT_ID"),
    }
