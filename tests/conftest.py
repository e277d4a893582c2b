from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Callable

import pytest

from civic_resolver.services.aggregator import ResolutionEngine
from civic_resolver.services.cache import ResolutionCache
from civic_resolver.services.directory import RepresentativeDirectory, build_snapshot
from civic_resolver.services.districts import DistrictMapper, parse_boundary_table
from civic_resolver.services.geo_providers import GeoLookupChain, StaticTableProvider
from civic_resolver.services.models import ContactInfo, PlaceCandidate, Representative, utcnow
from civic_resolver.services.quality import QualityGate
from civic_resolver.services.reference_data import ReferenceTables

BOUNDARY_TABLE = {
    "zips": {
        "95814": [
            {"level": "federal", "chamber": "house", "district": "7"},
            {"level": "state", "chamber": "upper", "district": "8"},
            {"level": "state", "chamber": "lower", "district": "7"},
            {"level": "county", "chamber": "supervisorial", "district": "1"},
            {"level": "municipal", "chamber": "council", "district": "4"},
        ],
        "93241": [
            {"level": "federal", "chamber": "house", "district": "22"},
            {"level": "state", "chamber": "upper", "district": "16"},
            {"level": "state", "chamber": "lower", "district": "35"},
            {"level": "county", "chamber": "supervisorial", "district": "5"},
        ],
    }
}


class CountingProvider:
    """Geo provider double that records how often it was called."""

    def __init__(
        self,
        name: str,
        candidate: PlaceCandidate | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        timeout_seconds: float = 1.0,
    ) -> None:
        self.name = name
        self.candidate = candidate
        self.delay = delay
        self.error = error
        self.timeout_seconds = timeout_seconds
        self.calls = 0

    async def resolve(self, zip_code: str) -> PlaceCandidate | None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.candidate


def make_representative(**overrides: Any) -> Representative:
    today = date.today()
    record = Representative(
        id="ca-ad-07-member",
        name="Jordan Alvarez",
        level="state",
        chamber="lower",
        district_id="CA-AD-07",
        party="Democratic",
        title="Assemblymember",
        contact=ContactInfo(
            phone="(916) 319-2007",
            email="district07@asm.ca.gov",
            website="https://a07.asmdc.org",
            office_address="1021 O Street, Sacramento, CA 95814",
        ),
        term_start=today - timedelta(days=300),
        term_end=today + timedelta(days=400),
        committees=("Budget", "Housing and Community Development"),
        source_provenance="state-legislature-roster",
        last_verified_at=utcnow() - timedelta(days=1),
    )
    return replace(record, **overrides)


def sacramento_representatives() -> dict[str, list[Representative]]:
    return {
        "federal": [
            make_representative(
                id="us-sen-ca-1", name="Morgan Reyes", level="federal", chamber="senate", district_id="CA",
                title="U.S. Senator",
            ),
            make_representative(
                id="us-sen-ca-2", name="Taylor Brooks", level="federal", chamber="senate", district_id="CA",
                title="U.S. Senator",
            ),
            make_representative(
                id="us-rep-ca-07", name="Casey Nguyen", level="federal", chamber="house", district_id="CA-07",
                title="U.S. Representative",
            ),
        ],
        "state": [
            make_representative(
                id="ca-sd-08", name="Riley Chen", level="state", chamber="upper", district_id="CA-SD-08",
                title="State Senator",
            ),
            make_representative(),
        ],
        "county": [
            make_representative(
                id="sac-sup-1", name="Avery Patel", level="county", chamber="supervisorial",
                district_id="CA:Sacramento County:1", title="Supervisor",
            ),
        ],
        "municipal": [
            make_representative(
                id="sac-mayor", name="Quinn Okafor", level="municipal", chamber="citywide",
                district_id="CA:Sacramento", title="Mayor",
            ),
            make_representative(
                id="sac-council-4", name="Drew Martinez", level="municipal", chamber="council",
                district_id="CA:Sacramento:4", title="Councilmember",
            ),
        ],
    }


def make_directory(records: dict[str, list[Representative]] | None = None) -> RepresentativeDirectory:
    snapshots = {
        level: build_snapshot(level, rows, version=1)
        for level, rows in (records if records is not None else sacramento_representatives()).items()
    }
    return RepresentativeDirectory(snapshots)


def make_engine(
    *,
    providers: list[Any] | None = None,
    directory: RepresentativeDirectory | None = None,
    cache: ResolutionCache | None = None,
    tables: ReferenceTables | None = None,
    allow_low_confidence_fallback: bool = False,
    level_fetch_timeout_seconds: float = 1.0,
) -> ResolutionEngine:
    tables = tables or ReferenceTables()
    return ResolutionEngine(
        geo_chain=GeoLookupChain(
            providers if providers is not None else [StaticTableProvider(tables)],
            allow_low_confidence_fallback=allow_low_confidence_fallback,
        ),
        mapper=DistrictMapper(parse_boundary_table(BOUNDARY_TABLE)),
        directory=directory or make_directory(),
        cache=cache or ResolutionCache(),
        gate=QualityGate(tables),
        tables=tables,
        level_fetch_timeout_seconds=level_fetch_timeout_seconds,
    )


@pytest.fixture
def representative_factory() -> Callable[..., Representative]:
    return make_representative


@pytest.fixture
def engine_factory() -> Callable[..., ResolutionEngine]:
    return make_engine
