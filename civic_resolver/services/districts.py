from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable

from civic_resolver.services.models import DistrictAssignment, DistrictHint, Jurisdiction

logger = logging.getLogger(__name__)

DERIVED_SOURCE = "derived"
BOUNDARY_TABLE_SOURCE = "boundary_table"

CHAMBERS: dict[str, tuple[str, ...]] = {
    "federal": ("senate", "house"),
    "state": ("upper", "lower"),
    "county": ("countywide", "supervisorial"),
    "municipal": ("citywide", "council"),
}

# States whose lower chamber is styled an Assembly.
_ASSEMBLY_STATES = {"CA", "NV", "NY", "NJ", "WI"}


def district_id_for(
    level: str,
    chamber: str,
    *,
    state: str,
    county: str | None = None,
    place: str | None = None,
    number: str | None = None,
) -> str:
    if level == "federal":
        if chamber == "senate":
            return state
        return f"{state}-{_pad(number)}"
    if level == "state":
        code = "SD" if chamber == "upper" else ("AD" if state in _ASSEMBLY_STATES else "HD")
        return f"{state}-{code}-{_pad(number)}"
    if level == "county":
        base = f"{state}:{county}"
        return base if chamber == "countywide" else f"{base}:{_require_number(number)}"
    if level == "municipal":
        base = f"{state}:{place}"
        return base if chamber == "citywide" else f"{base}:{_require_number(number)}"
    raise ValueError(f"unsupported level: {level}")


@dataclass(slots=True, frozen=True)
class BoundaryRow:
    level: str
    chamber: str
    number: str
    confidence: float = 1.0


@dataclass(slots=True)
class BoundaryTable:
    rows_by_zip: dict[str, tuple[BoundaryRow, ...]] = field(default_factory=dict)

    def rows_for(self, zip_code: str) -> tuple[BoundaryRow, ...]:
        return self.rows_by_zip.get(zip_code, ())


def load_boundary_table(path: str | None) -> BoundaryTable:
    """Load ``{"zips": {"95814": [{"level", "chamber", "district", "confidence"}]}}``."""
    if not path:
        return BoundaryTable()
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_boundary_table(payload)


def parse_boundary_table(payload: Any) -> BoundaryTable:
    if not isinstance(payload, dict):
        raise ValueError("boundary table must be a JSON object")
    raw_zips = payload.get("zips")
    if not isinstance(raw_zips, dict):
        raise ValueError("boundary table requires a 'zips' object")

    rows_by_zip: dict[str, tuple[BoundaryRow, ...]] = {}
    for zip_code, raw_rows in raw_zips.items():
        if not isinstance(raw_rows, list):
            raise ValueError(f"boundary rows for {zip_code} must be a list")
        rows = [_parse_boundary_row(zip_code, raw) for raw in raw_rows]
        rows_by_zip[str(zip_code).strip()] = tuple(rows)
    return BoundaryTable(rows_by_zip=rows_by_zip)


class DistrictMapper:
    def __init__(self, boundary_table: BoundaryTable | None = None) -> None:
        self.boundary_table = boundary_table or BoundaryTable()

    def assign(
        self,
        jurisdiction: Jurisdiction,
        hints: Iterable[DistrictHint] = (),
        *,
        hint_source: str = "provider_hint",
    ) -> Jurisdiction:
        """Attach every plausible district to ``jurisdiction``.

        ZIP codes straddle boundaries, so all candidates are kept. The
        highest-confidence assignment per (level, chamber) becomes primary
        and the rest are returned as alternates.
        """
        collected: dict[tuple[str, str, str], DistrictAssignment] = {}

        for assignment in self._derived(jurisdiction):
            _keep_best(collected, assignment)
        for hint in hints:
            assignment = self._from_row(
                jurisdiction, hint.level, hint.chamber, hint.district_number, hint.proportion, hint_source
            )
            if assignment is not None:
                _keep_best(collected, assignment)
        for row in self.boundary_table.rows_for(jurisdiction.zip_code):
            assignment = self._from_row(
                jurisdiction, row.level, row.chamber, row.number, row.confidence, BOUNDARY_TABLE_SOURCE
            )
            if assignment is not None:
                _keep_best(collected, assignment)

        primary: list[DistrictAssignment] = []
        alternates: list[DistrictAssignment] = []
        by_slot: dict[tuple[str, str], list[DistrictAssignment]] = {}
        for assignment in collected.values():
            by_slot.setdefault(assignment.slot, []).append(assignment)
        for slot in sorted(by_slot, key=_slot_order):
            ranked = sorted(by_slot[slot], key=lambda row: (-row.confidence, row.district_id))
            primary.append(ranked[0])
            alternates.extend(ranked[1:])

        if alternates:
            logger.info(
                "district assignment ambiguous zip=%s alternates=%s",
                jurisdiction.zip_code,
                ",".join(row.district_id for row in alternates),
            )
        return replace(jurisdiction, districts=tuple(primary), alternate_districts=tuple(alternates))

    @staticmethod
    def _derived(jurisdiction: Jurisdiction) -> list[DistrictAssignment]:
        state = jurisdiction.state
        derived = [
            DistrictAssignment(
                "federal", "senate", district_id_for("federal", "senate", state=state), 1.0, DERIVED_SOURCE
            ),
            DistrictAssignment(
                "county",
                "countywide",
                district_id_for("county", "countywide", state=state, county=jurisdiction.county),
                1.0,
                DERIVED_SOURCE,
            ),
        ]
        if "municipal" in jurisdiction.applicable_levels:
            derived.append(
                DistrictAssignment(
                    "municipal",
                    "citywide",
                    district_id_for("municipal", "citywide", state=state, place=jurisdiction.place_name),
                    1.0,
                    DERIVED_SOURCE,
                )
            )
        return derived

    @staticmethod
    def _from_row(
        jurisdiction: Jurisdiction,
        level: str,
        chamber: str,
        number: str,
        confidence: float,
        source: str,
    ) -> DistrictAssignment | None:
        if level not in jurisdiction.applicable_levels:
            logger.debug(
                "district dropped zip=%s level=%s reason=level_not_applicable",
                jurisdiction.zip_code,
                level,
            )
            return None
        district_id = district_id_for(
            level,
            chamber,
            state=jurisdiction.state,
            county=jurisdiction.county,
            place=jurisdiction.place_name,
            number=number,
        )
        return DistrictAssignment(level, chamber, district_id, min(1.0, max(0.0, confidence)), source)


def _keep_best(collected: dict[tuple[str, str, str], DistrictAssignment], assignment: DistrictAssignment) -> None:
    key = (assignment.level, assignment.chamber, assignment.district_id)
    existing = collected.get(key)
    if existing is None or assignment.confidence > existing.confidence:
        collected[key] = assignment


def _slot_order(slot: tuple[str, str]) -> tuple[int, int]:
    level, chamber = slot
    levels = list(CHAMBERS)
    chambers = CHAMBERS.get(level, ())
    return (
        levels.index(level) if level in levels else len(levels),
        chambers.index(chamber) if chamber in chambers else len(chambers),
    )


def _parse_boundary_row(zip_code: str, raw: Any) -> BoundaryRow:
    if not isinstance(raw, dict):
        raise ValueError(f"boundary row for {zip_code} must be an object")
    level = raw.get("level")
    chamber = raw.get("chamber")
    if level not in CHAMBERS or chamber not in CHAMBERS[level]:
        raise ValueError(f"boundary row for {zip_code} has unsupported level/chamber {level}/{chamber}")
    number = raw.get("district")
    if number is None or not str(number).strip():
        raise ValueError(f"boundary row for {zip_code} is missing 'district'")
    try:
        confidence = float(raw.get("confidence", 1.0))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"boundary row for {zip_code} has invalid confidence") from exc
    return BoundaryRow(level=level, chamber=chamber, number=str(number).strip(), confidence=confidence)


def _pad(number: str | None) -> str:
    value = _require_number(number)
    return value.zfill(2) if value.isdigit() else value


def _require_number(number: str | None) -> str:
    if number is None or not str(number).strip():
        raise ValueError("district number is required for this chamber")
    return str(number).strip()
