from fastapi import APIRouter, Depends, HTTPException, status as http_status

from civic_resolver.core.security import require_admin_api_key
from civic_resolver.schemas.cache import CacheInvalidationOut, CacheStatsOut
from civic_resolver.services.aggregator import ResolutionEngine, get_engine
from civic_resolver.services.errors import InvalidZipCode
from civic_resolver.services.geo_providers import normalize_zip_code

router = APIRouter()


@router.get("/stats", response_model=CacheStatsOut)
async def cache_stats(engine: ResolutionEngine = Depends(get_engine)) -> CacheStatsOut:
    return CacheStatsOut(**engine.cache_stats())


@router.delete(
    "/zip/{zip_code}",
    response_model=CacheInvalidationOut,
    dependencies=[Depends(require_admin_api_key)],
)
async def invalidate_zip(zip_code: str, engine: ResolutionEngine = Depends(get_engine)) -> CacheInvalidationOut:
    try:
        normalized = normalize_zip_code(zip_code)
    except InvalidZipCode as exc:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"zip_code": exc.zip_code, "reason": exc.reason},
        ) from exc
    invalidated = await engine.invalidate_zip(normalized)
    return CacheInvalidationOut(zip_code=normalized, invalidated=invalidated)
