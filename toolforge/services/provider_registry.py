"""Catalog of OAuth providers and their client credentials."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    display_name: str
    auth_url: str
    token_url: str
    default_scopes: List[str] = field(default_factory=list)
    client_id_env: str = ""
    client_secret_env: str = ""
    credential_prefix: str = ""
    scope_separator: str = " "


PROVIDERS: Dict[str, ProviderConfig] = {
    "slack": ProviderConfig(
        name="slack",
        display_name="Slack",
        auth_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        default_scopes=["channels:read", "channels:history", "chat:write"],
        client_id_env="SLACK_CLIENT_ID",
        client_secret_env="SLACK_CLIENT_SECRET",
        credential_prefix="slack",
        scope_separator=",",
    ),
    "github": ProviderConfig(
        name="github",
        display_name="GitHub",
        auth_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        default_scopes=["repo", "read:user"],
        client_id_env="GITHUB_CLIENT_ID",
        client_secret_env="GITHUB_CLIENT_SECRET",
        credential_prefix="github",
    ),
    "google": ProviderConfig(
        name="google",
        display_name="Google",
        auth_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        default_scopes=["https://www.googleapis.com/auth/gmail.send"],
        client_id_env="GOOGLE_CLIENT_ID",
        client_secret_env="GOOGLE_CLIENT_SECRET",
        credential_prefix="google",
    ),
}


class ProviderRegistry:
    """
    Read-only provider catalog.

    Client ids and secrets are read from the environment once, when the
    registry is constructed.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ
        self._providers = dict(PROVIDERS)
        self._client_ids: Dict[str, Optional[str]] = {}
        self._client_secrets: Dict[str, Optional[str]] = {}
        for name, provider in self._providers.items():
            self._client_ids[name] = env.get(provider.client_id_env) or None
            self._client_secrets[name] = env.get(provider.client_secret_env) or None

        configured = [name for name, client_id in self._client_ids.items() if client_id]
        logger.info(f"OAuth providers configured: {configured or 'none'}")

    def get_provider(self, name: Optional[str]) -> Optional[ProviderConfig]:
        if not name:
            return None
        return self._providers.get(name.lower())

    def list_providers(self) -> List[ProviderConfig]:
        return list(self._providers.values())

    def client_id(self, name: str) -> Optional[str]:
        return self._client_ids.get(name.lower())

    def client_secret(self, name: str) -> Optional[str]:
        return self._client_secrets.get(name.lower())

    def is_configured(self, name: str) -> bool:
        return bool(self.client_id(name) and self.client_secret(name))


provider_registry = ProviderRegistry()
