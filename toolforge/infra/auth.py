"""API authentication resolving the calling tenant."""

import hmac
from typing import Optional
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from toolforge.infra.config import config
from toolforge.infra.validation import validate_tenant_id

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
tenant_header = APIKeyHeader(name="X-Tenant-ID", auto_error=False)


def _constant_time_lookup(api_key: str) -> Optional[str]:
    for known_key, tenant_id in config.API_KEYS.items():
        if hmac.compare_digest(known_key, api_key):
            return tenant_id
    return None


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
    tenant_override: Optional[str] = Security(tenant_header),
) -> str:
    """
    Verify API key and return the tenant_id it is bound to.

    The master key may act for any tenant named in X-Tenant-ID.

    Raises:
        HTTPException: If API key is invalid or missing
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if len(api_key) < 16:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key format",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if config.MASTER_API_KEY and hmac.compare_digest(api_key, config.MASTER_API_KEY):
        if not tenant_override:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Master key requires an X-Tenant-ID header",
            )
        try:
            validate_tenant_id(tenant_override)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return tenant_override

    tenant_id = _constant_time_lookup(api_key)
    if tenant_id:
        return tenant_id

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid API key",
        headers={"WWW-Authenticate": "ApiKey"},
    )
