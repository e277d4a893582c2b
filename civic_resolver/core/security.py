import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from civic_resolver.core.config import Settings, get_settings


async def require_admin_api_key(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="admin api key is not configured",
        )
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"admin endpoints require {settings.api_key_header}",
        )

    expected_hash = hashlib.sha256(settings.admin_api_key.encode("utf-8")).hexdigest()
    key_hash = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    if not hmac.compare_digest(expected_hash, key_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")
