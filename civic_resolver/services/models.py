"""Domain records shared by every engine component.

All records are frozen dataclasses: a resolved jurisdiction is superseded on
re-resolution, never mutated, and representative records are owned by the
directory snapshot they were published in. The ``*_to_dict`` / ``*_from_dict``
pairs are the one serialization used by the API layer and the persisted
cache backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Literal

Level = Literal["federal", "state", "county", "municipal"]
IncorporationStatus = Literal[
    "incorporated_city",
    "census_designated_place",
    "unincorporated_area",
    "unknown",
]
LevelStatus = Literal["ok", "unavailable", "empty"]

LEVELS: tuple[str, ...] = ("federal", "state", "county", "municipal")
INCORPORATION_STATUSES = {"incorporated_city", "census_designated_place", "unincorporated_area", "unknown"}
FALLBACK_SOURCE = "fallback"


@dataclass(slots=True, frozen=True)
class DistrictHint:
    level: str
    chamber: str
    district_number: str
    proportion: float = 1.0


@dataclass(slots=True, frozen=True)
class PlaceCandidate:
    city: str | None
    county: str | None
    state: str | None
    provider: str
    confidence: float
    latitude: float | None = None
    longitude: float | None = None
    district_hints: tuple[DistrictHint, ...] = ()
    source: str = ""

    @property
    def completeness(self) -> float:
        present = sum(1 for value in (self.city, self.county, self.state) if value)
        return present / 3.0

    @property
    def is_complete(self) -> bool:
        return bool(self.city and self.county and self.state)

    def as_fallback(self) -> PlaceCandidate:
        return replace(self, source=FALLBACK_SOURCE)

    @property
    def effective_source(self) -> str:
        return self.source or self.provider


@dataclass(slots=True, frozen=True)
class DistrictAssignment:
    level: str
    chamber: str
    district_id: str
    confidence: float = 1.0
    source: str = "derived"

    @property
    def slot(self) -> tuple[str, str]:
        return (self.level, self.chamber)


@dataclass(slots=True, frozen=True)
class Jurisdiction:
    zip_code: str
    place_name: str
    county: str
    state: str
    incorporation_status: str
    applicable_levels: frozenset[str]
    confidence: float
    source: str
    provider: str
    resolved_at: datetime
    districts: tuple[DistrictAssignment, ...] = ()
    alternate_districts: tuple[DistrictAssignment, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE

    def ordered_levels(self) -> list[str]:
        return [level for level in LEVELS if level in self.applicable_levels]

    def assignments_for(self, level: str) -> list[DistrictAssignment]:
        primary = [row for row in self.districts if row.level == level]
        alternates = [row for row in self.alternate_districts if row.level == level]
        return primary + alternates


@dataclass(slots=True, frozen=True)
class ContactInfo:
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    office_address: str | None = None


@dataclass(slots=True, frozen=True)
class Representative:
    id: str
    name: str
    level: str
    chamber: str
    district_id: str
    party: str | None = None
    title: str | None = None
    contact: ContactInfo = field(default_factory=ContactInfo)
    term_start: date | None = None
    term_end: date | None = None
    committees: tuple[str, ...] = ()
    source_provenance: str = ""
    last_verified_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class QualityViolation:
    field: str
    rule: str
    observed_value: Any = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def district_assignment_to_dict(assignment: DistrictAssignment) -> dict[str, Any]:
    return {
        "level": assignment.level,
        "chamber": assignment.chamber,
        "district_id": assignment.district_id,
        "confidence": assignment.confidence,
        "source": assignment.source,
    }


def district_assignment_from_dict(payload: dict[str, Any]) -> DistrictAssignment:
    return DistrictAssignment(
        level=_require_text(payload, "level"),
        chamber=_require_text(payload, "chamber"),
        district_id=_require_text(payload, "district_id"),
        confidence=float(payload.get("confidence", 1.0)),
        source=str(payload.get("source") or "derived"),
    )


def jurisdiction_to_dict(jurisdiction: Jurisdiction) -> dict[str, Any]:
    return {
        "zip_code": jurisdiction.zip_code,
        "place_name": jurisdiction.place_name,
        "county": jurisdiction.county,
        "state": jurisdiction.state,
        "incorporation_status": jurisdiction.incorporation_status,
        "applicable_levels": jurisdiction.ordered_levels(),
        "confidence": jurisdiction.confidence,
        "source": jurisdiction.source,
        "provider": jurisdiction.provider,
        "resolved_at": jurisdiction.resolved_at.isoformat(),
        "districts": [district_assignment_to_dict(row) for row in jurisdiction.districts],
        "alternate_districts": [district_assignment_to_dict(row) for row in jurisdiction.alternate_districts],
    }


def jurisdiction_from_dict(payload: dict[str, Any]) -> Jurisdiction:
    if not isinstance(payload, dict):
        raise ValueError("jurisdiction payload must be an object")
    status = _require_text(payload, "incorporation_status")
    if status not in INCORPORATION_STATUSES:
        raise ValueError(f"unsupported incorporation_status: {status}")
    levels = payload.get("applicable_levels")
    if not isinstance(levels, list) or any(level not in LEVELS for level in levels):
        raise ValueError("applicable_levels must be a list of known levels")
    resolved_at = parse_timestamp(payload.get("resolved_at"))
    if resolved_at is None:
        raise ValueError("resolved_at must be an ISO-8601 timestamp")
    return Jurisdiction(
        zip_code=_require_text(payload, "zip_code"),
        place_name=_require_text(payload, "place_name"),
        county=_require_text(payload, "county"),
        state=_require_text(payload, "state"),
        incorporation_status=status,
        applicable_levels=frozenset(levels),
        confidence=float(payload["confidence"]),
        source=_require_text(payload, "source"),
        provider=str(payload.get("provider") or payload["source"]),
        resolved_at=resolved_at,
        districts=tuple(district_assignment_from_dict(row) for row in payload.get("districts") or []),
        alternate_districts=tuple(
            district_assignment_from_dict(row) for row in payload.get("alternate_districts") or []
        ),
    )


def representative_to_dict(representative: Representative) -> dict[str, Any]:
    return {
        "id": representative.id,
        "name": representative.name,
        "level": representative.level,
        "chamber": representative.chamber,
        "district_id": representative.district_id,
        "party": representative.party,
        "title": representative.title,
        "contact": {
            "phone": representative.contact.phone,
            "email": representative.contact.email,
            "website": representative.contact.website,
            "office_address": representative.contact.office_address,
        },
        "term_start": representative.term_start.isoformat() if representative.term_start else None,
        "term_end": representative.term_end.isoformat() if representative.term_end else None,
        "committees": list(representative.committees),
        "source_provenance": representative.source_provenance,
        "last_verified_at": (
            representative.last_verified_at.isoformat() if representative.last_verified_at else None
        ),
    }


def representative_from_dict(payload: dict[str, Any]) -> Representative:
    if not isinstance(payload, dict):
        raise ValueError("representative payload must be an object")
    level = _require_text(payload, "level")
    if level not in LEVELS:
        raise ValueError(f"unsupported level: {level}")
    raw_contact = payload.get("contact")
    contact: dict[str, Any] = raw_contact if isinstance(raw_contact, dict) else {}
    committees = payload.get("committees") or []
    if not isinstance(committees, list):
        raise ValueError("committees must be a list")
    return Representative(
        id=_require_text(payload, "id"),
        name=_require_text(payload, "name"),
        level=level,
        chamber=_require_text(payload, "chamber"),
        district_id=_require_text(payload, "district_id"),
        party=_as_text(payload.get("party")),
        title=_as_text(payload.get("title")),
        contact=ContactInfo(
            phone=_as_text(contact.get("phone")),
            email=_as_text(contact.get("email")),
            website=_as_text(contact.get("website")),
            office_address=_as_text(contact.get("office_address")),
        ),
        term_start=_parse_date(payload.get("term_start")),
        term_end=_parse_date(payload.get("term_end")),
        committees=tuple(str(item) for item in committees if isinstance(item, str) and item.strip()),
        source_provenance=str(payload.get("source_provenance") or ""),
        last_verified_at=parse_timestamp(payload.get("last_verified_at")),
    )


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = _as_text(payload.get(key))
    if value is None:
        raise ValueError(f"{key} must be a non-empty string")
    return value
