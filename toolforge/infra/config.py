"""Configuration management."""

import os
from typing import Dict, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"

# Existing environment variables take precedence
load_dotenv(dotenv_path=env_file, override=False)


def _parse_api_keys(raw: str) -> Dict[str, str]:
    """Parse API_KEYS as comma separated key=tenant_id pairs."""
    keys = {}
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        key, tenant_id = pair.split("=", 1)
        if key.strip() and tenant_id.strip():
            keys[key.strip()] = tenant_id.strip()
    return keys


class Config:
    """Application configuration."""
    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./toolforge.db")

    # Redis (optional, enables cross-process tenant locks)
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")

    # Reasoning service
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    REASONING_MODEL: str = os.getenv("REASONING_MODEL", "gpt-4o-mini")

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    APP_URL: str = os.getenv("APP_URL", "http://localhost:8000")
    OAUTH_REDIRECT_PATH: str = os.getenv("OAUTH_REDIRECT_PATH", "/api/tools/oauth/callback")

    # Signs OAuth state tokens; a random per-process secret is used when unset
    OAUTH_STATE_SECRET: Optional[str] = os.getenv("OAUTH_STATE_SECRET")

    # API access
    MASTER_API_KEY: Optional[str] = os.getenv("MASTER_API_KEY")
    API_KEYS: Dict[str, str] = _parse_api_keys(os.getenv("API_KEYS", ""))

    # External workflow tracker (optional, best effort)
    WORKFLOW_TRACKER_URL: Optional[str] = os.getenv("WORKFLOW_TRACKER_URL")
    WORKFLOW_TRACKER_TOKEN: Optional[str] = os.getenv("WORKFLOW_TRACKER_TOKEN")

    # Sandbox limits
    SANDBOX_MEMORY_LIMIT_MB: int = int(os.getenv("SANDBOX_MEMORY_LIMIT_MB", "512"))
    SANDBOX_CPU_SECONDS: int = int(os.getenv("SANDBOX_CPU_SECONDS", "20"))

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.APP_URL.rstrip('/')}{self.OAUTH_REDIRECT_PATH}"


config = Config()
