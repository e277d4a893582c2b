from fastapi import APIRouter, Depends, HTTPException, Path, status as http_status

from civic_resolver.core.security import require_admin_api_key
from civic_resolver.schemas.directory import LevelDirectoryStatusOut, SnapshotPublishOut, SnapshotPublishRequest
from civic_resolver.services.aggregator import ResolutionEngine, get_engine
from civic_resolver.services.directory import SnapshotRejected, snapshot_from_payload

router = APIRouter()

LEVEL_PATTERN = "^(federal|state|county|municipal)$"


@router.get("/status", response_model=dict[str, LevelDirectoryStatusOut])
async def directory_status(engine: ResolutionEngine = Depends(get_engine)) -> dict[str, LevelDirectoryStatusOut]:
    return {level: LevelDirectoryStatusOut(**row) for level, row in engine.directory.status().items()}


@router.put(
    "/{level}/snapshot",
    response_model=SnapshotPublishOut,
    dependencies=[Depends(require_admin_api_key)],
)
async def publish_snapshot(
    payload: SnapshotPublishRequest,
    level: str = Path(pattern=LEVEL_PATTERN),
    engine: ResolutionEngine = Depends(get_engine),
) -> SnapshotPublishOut:
    try:
        snapshot = snapshot_from_payload(level, payload.model_dump(mode="json"))
        previous = await engine.publish_snapshot(level, snapshot)
    except SnapshotRejected as exc:
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return SnapshotPublishOut(
        level=level,
        version=snapshot.version,
        published_at=snapshot.published_at,
        records=snapshot.record_count,
        previous_version=previous.version,
    )
