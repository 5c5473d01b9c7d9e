"""API key authentication dependency."""

import hmac
from typing import Optional

from fastapi import Header, HTTPException


async def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """FastAPI dependency that validates the shared API key from header."""
    from bastion_registry.common.config import get_settings

    settings = get_settings()
    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode("utf-8"), settings.api_key.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="unauthorized")
    return x_api_key
