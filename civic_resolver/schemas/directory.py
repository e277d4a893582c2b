from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SnapshotPublishRequest(BaseModel):
    version: int = Field(ge=1)
    published_at: datetime | None = None
    representatives: list[dict[str, Any]] = Field(default_factory=list)


class SnapshotPublishOut(BaseModel):
    level: str
    version: int
    published_at: datetime
    records: int
    previous_version: int
    invalidated_cache: bool = True


class LevelDirectoryStatusOut(BaseModel):
    version: int
    published_at: datetime
    records: int
    refresh_cadence_days: int
    stale: bool


class ReadinessOut(BaseModel):
    status: Literal["ok", "degraded"]
    geo_providers: list[str]
    directory_versions: dict[str, int]
    stale_levels: list[str]
