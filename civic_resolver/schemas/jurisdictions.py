from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Level = Literal["federal", "state", "county", "municipal"]
IncorporationStatus = Literal["incorporated_city", "census_designated_place", "unincorporated_area", "unknown"]
LevelStatus = Literal["ok", "unavailable", "empty"]
BundleStatus = Literal["complete", "partial"]


class DistrictAssignmentOut(BaseModel):
    level: Level
    chamber: str
    district_id: str
    confidence: float
    source: str


class JurisdictionOut(BaseModel):
    zip_code: str
    place_name: str
    county: str
    state: str
    incorporation_status: IncorporationStatus
    applicable_levels: list[Level]
    confidence: float
    source: str
    provider: str
    resolved_at: datetime
    districts: list[DistrictAssignmentOut] = Field(default_factory=list)
    alternate_districts: list[DistrictAssignmentOut] = Field(default_factory=list)


class AreaDescriptionOut(BaseModel):
    title: str
    description: str
    government_structure: str
    representatives: str


class ContactOut(BaseModel):
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    office_address: str | None = None


class RepresentativeOut(BaseModel):
    id: str
    name: str
    level: Level
    chamber: str
    district_id: str
    party: str | None = None
    title: str | None = None
    contact: ContactOut = Field(default_factory=ContactOut)
    term_start: date | None = None
    term_end: date | None = None
    committees: list[str] = Field(default_factory=list)
    source_provenance: str = ""
    last_verified_at: datetime | None = None


class ViolationOut(BaseModel):
    field: str
    rule: str
    observed_value: Any = None


class LevelResultOut(BaseModel):
    status: LevelStatus
    records: list[RepresentativeOut] = Field(default_factory=list)
    reason: str | None = None
    rejected: list[ViolationOut] = Field(default_factory=list)


class JurisdictionBundleOut(BaseModel):
    status: BundleStatus
    from_cache: bool = False
    jurisdiction: JurisdictionOut
    area: AreaDescriptionOut
    representatives_by_level: dict[Level, LevelResultOut]


class BatchResolveRequest(BaseModel):
    zip_codes: list[str] = Field(min_length=1, max_length=100)
    deadline_ms: int | None = Field(default=None, ge=1, le=60000)


class BatchItemOut(BaseModel):
    zip_code: str
    bundle: JurisdictionBundleOut | None = None
    error: str | None = None
    violations: list[ViolationOut] = Field(default_factory=list)
