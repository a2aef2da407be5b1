"""
X-API-KEY check for the monitoring API.

``API_KEYS`` holds a comma-separated list of accepted keys. When it is unset
the API runs open, which is the development default.
"""

import hmac

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from fleetwatch.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)

DEV_MODE_KEY = "dev-mode"


def _accepted_keys(raw: str) -> list[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Resolve the caller's API key.

    Raises:
        HTTPException: 401 if keys are configured and the header is missing
            or matches none of them.
    """
    settings = get_settings()
    if not settings.api_keys:
        return DEV_MODE_KEY

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )
    if not any(hmac.compare_digest(api_key, k) for k in _accepted_keys(settings.api_keys)):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return api_key
