"""Per-level representative directory backed by published, read-only snapshots.

Lookups only ever read the currently published snapshot. Refresh jobs live
outside this process and hand a complete replacement to ``publish``; a lookup
never triggers a refresh and an empty answer for a district is legitimate.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from civic_resolver.services.models import (
    LEVELS,
    Representative,
    parse_timestamp,
    representative_from_dict,
    utcnow,
)

logger = logging.getLogger(__name__)

REFRESH_CADENCE_DAYS: dict[str, int] = {
    "federal": 7,
    "state": 14,
    "county": 30,
    "municipal": 14,
}
STALE_AFTER_CADENCES = 2


class SnapshotRejected(ValueError):
    """Raised when a snapshot cannot be published for a level."""


@dataclass(slots=True, frozen=True)
class DirectorySnapshot:
    level: str
    version: int
    published_at: datetime
    records: Mapping[str, tuple[Representative, ...]] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def record_count(self) -> int:
        return sum(len(rows) for rows in self.records.values())

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.published_at


def build_snapshot(
    level: str,
    representatives: Iterable[Representative],
    *,
    version: int,
    published_at: datetime | None = None,
) -> DirectorySnapshot:
    if level not in LEVELS:
        raise SnapshotRejected(f"unsupported level: {level}")

    grouped: dict[str, list[Representative]] = {}
    seen_ids: set[str] = set()
    for representative in representatives:
        if representative.level != level:
            raise SnapshotRejected(
                f"representative {representative.id} has level={representative.level}, expected {level}"
            )
        if representative.id in seen_ids:
            raise SnapshotRejected(f"duplicate representative id {representative.id}")
        seen_ids.add(representative.id)
        grouped.setdefault(representative.district_id, []).append(representative)

    records = MappingProxyType(
        {
            district_id: tuple(sorted(rows, key=lambda row: (row.chamber, row.id)))
            for district_id, rows in grouped.items()
        }
    )
    return DirectorySnapshot(level=level, version=version, published_at=published_at or utcnow(), records=records)


def snapshot_from_payload(level: str, payload: Any) -> DirectorySnapshot:
    """Build a snapshot from ``{"version", "published_at", "representatives": [...]}``."""
    if not isinstance(payload, dict):
        raise SnapshotRejected("snapshot payload must be an object")
    try:
        version = int(payload.get("version"))
    except (TypeError, ValueError) as exc:
        raise SnapshotRejected("snapshot version must be an integer") from exc

    raw_rows = payload.get("representatives")
    if not isinstance(raw_rows, list):
        raise SnapshotRejected("snapshot requires a 'representatives' list")
    try:
        representatives = [representative_from_dict(raw) for raw in raw_rows]
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotRejected(f"invalid representative record: {exc}") from exc

    return build_snapshot(
        level,
        representatives,
        version=version,
        published_at=parse_timestamp(payload.get("published_at")),
    )


def load_snapshot_dir(path: str | None) -> dict[str, DirectorySnapshot]:
    if not path:
        return {}
    directory = Path(path)
    snapshots: dict[str, DirectorySnapshot] = {}
    for level in LEVELS:
        snapshot_path = directory / f"{level}.json"
        if not snapshot_path.exists():
            continue
        payload = json.loads(snapshot_path.read_text(encoding="utf-8"))
        snapshots[level] = snapshot_from_payload(level, payload)
        logger.info(
            "directory snapshot loaded level=%s version=%s records=%s",
            level,
            snapshots[level].version,
            snapshots[level].record_count,
        )
    return snapshots


class RepresentativeDirectory:
    def __init__(self, snapshots: Mapping[str, DirectorySnapshot] | None = None) -> None:
        self._snapshots: dict[str, DirectorySnapshot] = {
            level: DirectorySnapshot(level=level, version=0, published_at=utcnow()) for level in LEVELS
        }
        for level, snapshot in (snapshots or {}).items():
            self.publish(level, snapshot)

    def snapshot(self, level: str) -> DirectorySnapshot:
        if level not in self._snapshots:
            raise KeyError(level)
        return self._snapshots[level]

    def publish(self, level: str, snapshot: DirectorySnapshot) -> DirectorySnapshot:
        if level not in self._snapshots:
            raise SnapshotRejected(f"unsupported level: {level}")
        if snapshot.level != level:
            raise SnapshotRejected(f"snapshot is for level={snapshot.level}, not {level}")

        current = self._snapshots[level]
        if current.version and snapshot.version <= current.version:
            raise SnapshotRejected(
                f"snapshot version {snapshot.version} is not newer than published version {current.version}"
            )
        self._snapshots[level] = snapshot
        logger.info(
            "directory snapshot published level=%s version=%s records=%s",
            level,
            snapshot.version,
            snapshot.record_count,
        )
        return current

    async def get_by_district(self, level: str, district_id: str) -> list[Representative]:
        return list(self.snapshot(level).records.get(district_id, ()))

    def is_stale(self, level: str, *, now: datetime | None = None) -> bool:
        snapshot = self.snapshot(level)
        if snapshot.version == 0:
            return True
        limit = timedelta(days=REFRESH_CADENCE_DAYS[level] * STALE_AFTER_CADENCES)
        return snapshot.age(now) > limit

    def status(self, *, now: datetime | None = None) -> dict[str, dict[str, Any]]:
        current = now or utcnow()
        return {
            level: {
                "version": snapshot.version,
                "published_at": snapshot.published_at.isoformat(),
                "records": snapshot.record_count,
                "refresh_cadence_days": REFRESH_CADENCE_DAYS[level],
                "stale": self.is_stale(level, now=current),
            }
            for level, snapshot in self._snapshots.items()
        }
