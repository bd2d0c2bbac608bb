"""
API Key Authentication

Reap endpoints delete data, so they sit behind an X-API-Key check when
``require_api_key`` is enabled.
"""
import hmac

from fastapi import Depends, Security, HTTPException, status
from fastapi.security import APIKeyHeader

from dbreaper.config import Settings, get_settings

# API Key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def get_api_key(
    api_key: str = Security(api_key_header),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Validate API key from request header

    Args:
        api_key: API key from X-API-Key header

    Returns:
        str: The validated API key

    Raises:
        HTTPException: If API key is missing or invalid
    """
    if not settings.require_api_key:
        return "api-key-not-required"

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not any(hmac.compare_digest(api_key, key) for key in settings.valid_api_keys):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key
