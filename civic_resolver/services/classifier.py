from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from civic_resolver.services.models import Jurisdiction, PlaceCandidate, utcnow
from civic_resolver.services.reference_data import ReferenceTables

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_PLACE_PREFIXES = ("city of ", "town of ", "village of ", "city and county of ")

EXACT_MATCH_CERTAINTY = 1.0
NORMALIZED_MATCH_CERTAINTY = 0.95
FUZZY_MATCH_THRESHOLD = 0.75
FUZZY_MATCH_SCALE = 0.85
CDP_MATCH_CERTAINTY = 1.0
UNINCORPORATED_CERTAINTY = 0.75
UNKNOWN_CERTAINTY = 0.5

BASE_LEVELS = frozenset({"federal", "state", "county"})


@dataclass(slots=True, frozen=True)
class Classification:
    status: str
    certainty: float
    matched_name: str | None


@dataclass(slots=True, frozen=True)
class AreaDescription:
    title: str
    description: str
    government_structure: str
    representatives: str


def classify(
    candidate: PlaceCandidate,
    zip_code: str,
    tables: ReferenceTables,
    *,
    now: datetime | None = None,
) -> Jurisdiction:
    """Turn an accepted place candidate into a district-less ``Jurisdiction``.

    Pure apart from ``resolved_at``; pass ``now`` to make it fully
    deterministic. The candidate must be complete.
    """
    if not candidate.is_complete:
        raise ValueError("classification requires city, county and state")

    city = candidate.city or ""
    state = candidate.state or ""
    result = classify_place(city, state, tables)
    place_name = result.matched_name or city

    return Jurisdiction(
        zip_code=zip_code,
        place_name=place_name,
        county=candidate.county or "",
        state=state,
        incorporation_status=result.status,
        applicable_levels=applicable_levels_for(result.status),
        confidence=round(min(candidate.confidence, result.certainty), 4),
        source=candidate.effective_source,
        provider=candidate.provider,
        resolved_at=now or utcnow(),
    )


def classify_place(city: str, state: str, tables: ReferenceTables) -> Classification:
    incorporated = tables.incorporated_places.get(state, frozenset())
    designated = tables.census_designated_places.get(state, frozenset())

    if city in incorporated:
        return Classification("incorporated_city", EXACT_MATCH_CERTAINTY, city)
    if city in designated:
        return Classification("census_designated_place", CDP_MATCH_CERTAINTY, city)

    normalized = normalize_place_name(city)
    for name in sorted(incorporated):
        if normalize_place_name(name) == normalized:
            return Classification("incorporated_city", NORMALIZED_MATCH_CERTAINTY, name)

    best_name, best_score = _best_fuzzy_match(normalized, incorporated)
    if best_name is not None and best_score >= FUZZY_MATCH_THRESHOLD:
        return Classification("incorporated_city", round(FUZZY_MATCH_SCALE * best_score, 4), best_name)

    for name in sorted(designated):
        if normalize_place_name(name) == normalized:
            return Classification("census_designated_place", NORMALIZED_MATCH_CERTAINTY, name)

    if tables.has_authority(state):
        return Classification("unincorporated_area", UNINCORPORATED_CERTAINTY, None)
    return Classification("unknown", UNKNOWN_CERTAINTY, None)


def applicable_levels_for(status: str) -> frozenset[str]:
    if status == "incorporated_city":
        return BASE_LEVELS | {"municipal"}
    return BASE_LEVELS


def normalize_place_name(value: str) -> str:
    lowered = " ".join(value.casefold().split())
    for prefix in _PLACE_PREFIXES:
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix):]
            break
    return " ".join(_TOKEN_RE.findall(lowered))


def describe_area(jurisdiction: Jurisdiction) -> AreaDescription:
    name = jurisdiction.place_name
    county = jurisdiction.county
    status = jurisdiction.incorporation_status

    if status == "incorporated_city":
        return AreaDescription(
            title=f"City of {name}",
            description=f"{name} is an incorporated city in {county}.",
            government_structure="This city has its own local government with a mayor and city council.",
            representatives="You have representatives at the city, county, state, and federal levels.",
        )
    if status == "census_designated_place":
        return AreaDescription(
            title=f"{name} (Unincorporated)",
            description=f"{name} is a census designated place in {county}.",
            government_structure="This community is unincorporated and governed by the county.",
            representatives="You have representatives at the county, state, and federal levels.",
        )
    if status == "unincorporated_area":
        return AreaDescription(
            title=name,
            description=f"{name} is an unincorporated area in {county}.",
            government_structure="This area is governed directly by the county government.",
            representatives=(
                "You have representatives at the county, state, and federal levels. "
                "There are no city-level representatives."
            ),
        )
    return AreaDescription(
        title=name,
        description=f"{name} is in {county}; its incorporation status could not be verified.",
        government_structure="Local government structure could not be verified.",
        representatives="You have representatives at the county, state, and federal levels.",
    )


def _best_fuzzy_match(normalized: str, names: frozenset[str]) -> tuple[str | None, float]:
    tokens = set(normalized.split())
    best_name: str | None = None
    best_score = 0.0
    for name in sorted(names):
        score = _jaccard(tokens, set(normalize_place_name(name).split()))
        if score > best_score:
            best_name, best_score = name, score
    return best_name, best_score


def _jaccard(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    intersection = len(left & right)
    union = len(left | right)
    if union <= 0:
        return 0.0
    return intersection / union
