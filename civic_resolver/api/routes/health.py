from fastapi import APIRouter, Depends

from civic_resolver.schemas.directory import ReadinessOut
from civic_resolver.services.aggregator import ResolutionEngine, get_engine

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", response_model=ReadinessOut)
async def readyz(engine: ResolutionEngine = Depends(get_engine)) -> ReadinessOut:
    # Unpublished levels count as stale.
    status = engine.directory.status()
    stale_levels = [level for level, row in status.items() if row["stale"]]
    return ReadinessOut(
        status="degraded" if stale_levels else "ok",
        geo_providers=[provider.name for provider in engine.geo_chain.providers],
        directory_versions={level: row["version"] for level, row in status.items()},
        stale_levels=stale_levels,
    )
