"""OAuth orchestration: authorization URLs, signed state, code exchange and tool activation."""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode
import httpx

from toolforge.infra.circuit_breaker import CircuitOpenError, oauth_circuit_breaker
from toolforge.infra.config import config
from toolforge.infra.error_handler import (
    InvalidOAuthState,
    MissingClientConfig,
    OAuthExchangeError,
    ProviderNotImplementedError,
    ToolNotFoundError,
    UnknownProviderError,
)
from toolforge.infra.metrics import oauth_exchanges_total
from toolforge.infra.tenant_locks import TenantLockManager, tenant_locks
from toolforge.infra.timeout import OAUTH_EXCHANGE_TIMEOUT
from toolforge.models.tool import ToolRecord, ToolStatus
from toolforge.services.provider_registry import ProviderConfig, ProviderRegistry, provider_registry
from toolforge.services.tool_registry import ToolRegistry, tool_registry
from toolforge.services.tool_runner import ToolRunner, tool_runner
from toolforge.services.tool_store import TenantToolStore, tool_store

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 32


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass
class OAuthCompletion:
    tenant_id: str
    tool_id: str
    provider: str
    record: ToolRecord


class OAuthService:
    """Drives a tool from auth_required to active."""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        tools: Optional[ToolRegistry] = None,
        store: Optional[TenantToolStore] = None,
        runner: Optional[ToolRunner] = None,
        locks: Optional[TenantLockManager] = None,
        state_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        timeout: float = OAUTH_EXCHANGE_TIMEOUT,
    ):
        self.registry = registry or provider_registry
        self.tools = tools or tool_registry
        self.store = store or tool_store
        self.runner = runner or tool_runner
        self.locks = locks or tenant_locks
        self.redirect_uri = redirect_uri or config.oauth_redirect_uri
        self.timeout = timeout
        secret = state_secret or config.OAUTH_STATE_SECRET
        if not secret:
            logger.warning("OAUTH_STATE_SECRET not set; OAuth state tokens only verify within this process")
            secret = secrets.token_hex(32)
        self._secret = secret.encode("utf-8")

    # ------------------------------------------------------------------
    # State tokens
    # ------------------------------------------------------------------

    def _signature(self, tenant_id: str, tool_id: str) -> str:
        digest = hmac.new(self._secret, f"{tenant_id}:{tool_id}".encode("utf-8"), hashlib.sha256)
        return digest.hexdigest()[:SIGNATURE_LENGTH]

    def build_state(self, tenant_id: str, tool_id: str) -> str:
        return f"{tenant_id}:{tool_id}:{self._signature(tenant_id, tool_id)}"

    def parse_state(self, state: str) -> Tuple[str, str]:
        """
        Verify a state token and return (tenant_id, tool_id).

        Raises:
            InvalidOAuthState: Malformed token or bad signature
        """
        parts = (state or "").split(":")
        if len(parts) != 3 or not all(parts):
            raise InvalidOAuthState("Invalid OAuth state format")
        tenant_id, tool_id, signature = parts
        if not hmac.compare_digest(signature, self._signature(tenant_id, tool_id)):
            raise InvalidOAuthState("OAuth state signature mismatch")
        return tenant_id, tool_id

    # ------------------------------------------------------------------
    # Authorization URL
    # ------------------------------------------------------------------

    def _provider(self, name: str) -> ProviderConfig:
        provider = self.registry.get_provider(name)
        if provider is None:
            raise UnknownProviderError(f"Unknown OAuth provider: {name}")
        return provider

    def build_authorization_url(
        self,
        provider_name: str,
        tenant_id: str,
        tool_id: str,
        scopes: Optional[List[str]] = None,
    ) -> str:
        """
        Build the provider authorization URL for a tool.

        Raises:
            UnknownProviderError: Provider not in the registry
            MissingClientConfig: Provider client id not configured
        """
        provider = self._provider(provider_name)
        client_id = self.registry.client_id(provider.name)
        if not client_id:
            raise MissingClientConfig(f"{provider.display_name} client ID not configured ({provider.client_id_env})")

        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri,
            "scope": provider.scope_separator.join(scopes or provider.default_scopes),
            "state": self.build_state(tenant_id, tool_id),
            "response_type": "code",
        }
        return f"{provider.auth_url}?{urlencode(params, safe=':', quote_via=quote)}"

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    async def _post(self, url: str, data: Dict[str, str], headers: Dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, data=data, headers=headers)

    async def _request_token(self, provider: ProviderConfig, code: str, headers: Dict[str, str]) -> Dict[str, Any]:
        client_id = self.registry.client_id(provider.name)
        client_secret = self.registry.client_secret(provider.name)
        if not client_id or not client_secret:
            raise MissingClientConfig(f"{provider.display_name} OAuth credentials not configured")

        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        try:
            response = await oauth_circuit_breaker.call_async(self._post, provider.token_url, form, headers)
        except CircuitOpenError as e:
            raise OAuthExchangeError(str(e)) from e
        except httpx.TimeoutException as e:
            raise OAuthExchangeError(f"{provider.display_name} token endpoint timed out") from e
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"{provider.display_name} token endpoint unreachable: {e}") from e

        if response.status_code >= 400:
            raise OAuthExchangeError(
                f"{provider.display_name} token exchange failed ({response.status_code})",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise OAuthExchangeError(f"{provider.display_name} returned a non-JSON token response") from e

    async def _exchange_slack(self, provider: ProviderConfig, code: str) -> TokenSet:
        data = await self._request_token(
            provider, code, {"Content-Type": "application/x-www-form-urlencoded"}
        )
        if not data.get("ok") or not data.get("access_token"):
            raise OAuthExchangeError(f"Slack OAuth token exchange failed: {data.get('error', 'unknown error')}")
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
            expires_in=data.get("expires_in"),
        )

    async def _exchange_github(self, provider: ProviderConfig, code: str) -> TokenSet:
        data = await self._request_token(provider, code, {"Accept": "application/json"})
        if data.get("error") or not data.get("access_token"):
            raise OAuthExchangeError(
                f"GitHub OAuth token exchange failed: {data.get('error_description') or data.get('error', 'unknown error')}"
            )
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
            expires_in=data.get("expires_in"),
        )

    async def exchange_code(self, provider_name: str, code: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            UnknownProviderError: Provider not in the registry
            ProviderNotImplementedError: Exchange not implemented for the provider
            OAuthExchangeError: Token endpoint error, rejection or timeout
        """
        provider = self._provider(provider_name)
        exchanges = {
            "slack": self._exchange_slack,
            "github": self._exchange_github,
        }
        exchange = exchanges.get(provider.name)
        if exchange is None:
            oauth_exchanges_total.labels(provider=provider.name, status="not_implemented").inc()
            raise ProviderNotImplementedError(f"OAuth exchange not implemented for provider: {provider.name}")

        try:
            tokens = await exchange(provider, code)
        except OAuthExchangeError:
            oauth_exchanges_total.labels(provider=provider.name, status="error").inc()
            raise
        oauth_exchanges_total.labels(provider=provider.name, status="success").inc()
        return tokens

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    @staticmethod
    def credentials_from_tokens(provider: ProviderConfig, tokens: TokenSet) -> Dict[str, str]:
        prefix = provider.credential_prefix or provider.name
        credentials = {f"{prefix}_access_token": tokens.access_token}
        if tokens.refresh_token:
            credentials[f"{prefix}_refresh_token"] = tokens.refresh_token
        if tokens.scope:
            credentials[f"{prefix}_scope"] = tokens.scope
        return credentials

    def _live_record(self, tenant_id: str, tool_id: str) -> ToolRecord:
        record = self.tools.get(tenant_id, tool_id)
        if record is None:
            raise ToolNotFoundError(f"Tool {tool_id} not found for tenant {tenant_id}")
        if record.status == ToolStatus.INACTIVE:
            raise ToolNotFoundError(f"Tool {tool_id} was removed for tenant {tenant_id}")
        return record

    async def complete_authorization(self, code: str, state: str) -> OAuthCompletion:
        """
        Handle an OAuth callback: verify state, exchange the code, store
        credentials, activate the tool and invalidate the tenant's runner cache.

        The credential merge and activation run under the tenant lock, the
        same lock builds and removals hold.

        Raises:
            ToolNotFoundError: Unknown tool, or a tool removed before the callback arrived
        """
        tenant_id, tool_id = self.parse_state(state)

        record = self._live_record(tenant_id, tool_id)
        if not record.provider:
            raise UnknownProviderError(f"Tool {tool_id} has no OAuth provider")

        provider = self._provider(record.provider)
        logger.info(f"OAuth callback for tenant {tenant_id}, tool {tool_id} ({provider.name})")

        tokens = await self.exchange_code(provider.name, code)
        async with self.locks.hold(tenant_id):
            # The tool may have been removed while the code was being exchanged
            self._live_record(tenant_id, tool_id)
            self.store.put_credentials(tenant_id, self.credentials_from_tokens(provider, tokens))
            updated = self.tools.update_status(tenant_id, tool_id, ToolStatus.ACTIVE, oauth_complete=True)
            self.runner.invalidate(tenant_id)

        return OAuthCompletion(tenant_id=tenant_id, tool_id=tool_id, provider=provider.name, record=updated)


oauth_service = OAuthService()
