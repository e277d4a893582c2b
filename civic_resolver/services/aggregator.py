from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Iterator, Mapping, Sequence

import httpx
from opentelemetry import trace

from civic_resolver.core.config import Settings, get_settings
from civic_resolver.core.telemetry import bound_zip_code
from civic_resolver.services.cache import RedisCacheBackend, ResolutionCache
from civic_resolver.services.classifier import AreaDescription, classify, describe_area
from civic_resolver.services.directory import DirectorySnapshot, RepresentativeDirectory, load_snapshot_dir
from civic_resolver.services.districts import DistrictMapper, load_boundary_table
from civic_resolver.services.errors import JurisdictionUnresolved, ResolutionError
from civic_resolver.services.geo_providers import (
    GeocodioProvider,
    GeoLookupChain,
    GeoProvider,
    MunicipalRegistryProvider,
    StaticTableProvider,
    normalize_zip_code,
)
from civic_resolver.services.models import DistrictAssignment, Jurisdiction, QualityViolation, Representative
from civic_resolver.services.quality import QualityGate, load_quality_rules
from civic_resolver.services.reference_data import ReferenceTables, load_reference_tables

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class Stage(str, Enum):
    CACHE_CHECK = "cache_check"
    RESOLVE_GEO = "resolve_geo"
    CLASSIFY = "classify"
    MAP_DISTRICTS = "map_districts"
    FETCH_REPS = "fetch_reps"
    VALIDATE = "validate"
    CACHE_WRITE = "cache_write"


@dataclass(slots=True, frozen=True)
class LevelResult:
    level: str
    status: str
    records: tuple[Representative, ...] = ()
    reason: str | None = None
    rejected: tuple[QualityViolation, ...] = ()


@dataclass(slots=True, frozen=True)
class JurisdictionBundle:
    jurisdiction: Jurisdiction
    representatives_by_level: Mapping[str, LevelResult]
    from_cache: bool = False

    @property
    def status(self) -> str:
        if all(row.status in {"ok", "empty"} for row in self.representatives_by_level.values()):
            return "complete"
        return "partial"


@dataclass(slots=True)
class BatchItem:
    zip_code: str
    bundle: JurisdictionBundle | None = None
    error: ResolutionError | None = None


@dataclass(slots=True)
class _LevelFetch:
    level: str
    version: int = 0
    by_district: dict[str, tuple[Representative, ...]] = field(default_factory=dict)
    fetched: set[str] = field(default_factory=set)


class ResolutionEngine:
    """ZIP code in, jurisdiction plus per-level representatives out.

    Every collaborator is injected. A request never retries: provider
    failures fall through the geo chain, a slow or failing level is reported
    as ``unavailable`` and everything else is still returned.
    """

    def __init__(
        self,
        *,
        geo_chain: GeoLookupChain,
        mapper: DistrictMapper,
        directory: RepresentativeDirectory,
        cache: ResolutionCache,
        gate: QualityGate,
        tables: ReferenceTables,
        level_fetch_timeout_seconds: float = 2.0,
        default_deadline_seconds: float | None = 10.0,
        batch_concurrency: int = 8,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.geo_chain = geo_chain
        self.mapper = mapper
        self.directory = directory
        self.cache = cache
        self.gate = gate
        self.tables = tables
        self.level_fetch_timeout_seconds = level_fetch_timeout_seconds
        self.default_deadline_seconds = default_deadline_seconds
        self.batch_concurrency = max(1, batch_concurrency)
        self._http_client = http_client

    async def resolve(self, zip_code: str, deadline: float | None = None) -> JurisdictionBundle:
        """Resolve ``zip_code``; ``deadline`` is a budget in seconds for the whole call."""
        loop = asyncio.get_running_loop()
        budget = deadline if deadline is not None else self.default_deadline_seconds
        expires_at = loop.time() + budget if budget is not None else None

        with tracer.start_as_current_span("resolve") as span:
            zip_code = normalize_zip_code(zip_code)
            span.set_attribute("zip_code", zip_code)

            with bound_zip_code(zip_code):
                with _stage(Stage.CACHE_CHECK, zip_code):
                    jurisdiction = await self.cache.get_jurisdiction(zip_code)
                    if jurisdiction is not None and not self.gate.validate(jurisdiction).accepted:
                        logger.info("cached jurisdiction no longer passes quality rules zip=%s", zip_code)
                        await self.cache.invalidate_zip(zip_code)
                        jurisdiction = None
                from_cache = jurisdiction is not None

                if jurisdiction is None:
                    with _stage(Stage.RESOLVE_GEO, zip_code):
                        resolution = await self.geo_chain.resolve(zip_code, deadline=expires_at)
                    candidate = resolution.candidate
                    with _stage(Stage.CLASSIFY, zip_code):
                        jurisdiction = classify(candidate, zip_code, self.tables)
                    with _stage(Stage.MAP_DISTRICTS, zip_code):
                        jurisdiction = self.mapper.assign(
                            jurisdiction, candidate.district_hints, hint_source=candidate.provider
                        )
                    with _stage(Stage.VALIDATE, zip_code):
                        verdict = self.gate.validate(jurisdiction)
                    if not verdict.accepted:
                        raise JurisdictionUnresolved(
                            zip_code, "jurisdiction rejected by quality gate", verdict.violations
                        )

                with _stage(Stage.FETCH_REPS, zip_code):
                    fetches, failures = await self._fetch_levels(jurisdiction, expires_at)

                with _stage(Stage.VALIDATE, zip_code):
                    levels = self._validate_levels(jurisdiction, fetches, failures)

                with _stage(Stage.CACHE_WRITE, zip_code):
                    if not from_cache:
                        await self.cache.put_jurisdiction(jurisdiction)
                    for fetch in fetches.values():
                        if self.directory.snapshot(fetch.level).version != fetch.version:
                            logger.info(
                                "skipping cache write for superseded snapshot zip=%s level=%s version=%s",
                                zip_code,
                                fetch.level,
                                fetch.version,
                            )
                            continue
                        for district_id in sorted(fetch.fetched):
                            await self.cache.put_representatives(
                                fetch.level, district_id, fetch.by_district[district_id]
                            )

                bundle = JurisdictionBundle(
                    jurisdiction=jurisdiction,
                    representatives_by_level=MappingProxyType(levels),
                    from_cache=from_cache,
                )
                span.set_attribute("bundle.status", bundle.status)
                logger.info(
                    "resolution finished zip=%s status=%s from_cache=%s levels=%s",
                    zip_code,
                    bundle.status,
                    from_cache,
                    ",".join(f"{level}:{row.status}" for level, row in levels.items()),
                )
                return bundle

    async def resolve_many(self, zip_codes: Sequence[str], deadline: float | None = None) -> list[BatchItem]:
        semaphore = asyncio.Semaphore(self.batch_concurrency)
        unique = list(dict.fromkeys(zip_codes))

        async def run_one(raw_zip: str) -> BatchItem:
            async with semaphore:
                try:
                    return BatchItem(zip_code=raw_zip, bundle=await self.resolve(raw_zip, deadline=deadline))
                except ResolutionError as exc:
                    logger.info("batch resolution failed zip=%s: %s", raw_zip, exc)
                    return BatchItem(zip_code=raw_zip, error=exc)

        results = await asyncio.gather(*(run_one(raw_zip) for raw_zip in unique))
        by_zip = {item.zip_code: item for item in results}
        return [by_zip[raw_zip] for raw_zip in zip_codes]

    async def publish_snapshot(self, level: str, snapshot: DirectorySnapshot) -> DirectorySnapshot:
        previous = self.directory.publish(level, snapshot)
        await self.cache.invalidate_level(level)
        return previous

    async def invalidate_zip(self, zip_code: str) -> bool:
        return await self.cache.invalidate_zip(normalize_zip_code(zip_code))

    def cache_stats(self) -> dict[str, object]:
        return self.cache.stats()

    def describe(self, jurisdiction: Jurisdiction) -> AreaDescription:
        return describe_area(jurisdiction)

    async def close(self) -> None:
        await self.cache.close()
        if self._http_client is not None:
            await self._http_client.aclose()

    async def _fetch_levels(
        self,
        jurisdiction: Jurisdiction,
        expires_at: float | None,
    ) -> tuple[dict[str, _LevelFetch], dict[str, str]]:
        loop = asyncio.get_running_loop()
        fetches: dict[str, _LevelFetch] = {}
        failures: dict[str, str] = {}
        tasks: dict[asyncio.Task[_LevelFetch], str] = {}

        timeout = self.level_fetch_timeout_seconds
        if expires_at is not None:
            timeout = min(timeout, expires_at - loop.time())

        for level in jurisdiction.ordered_levels():
            assignments = jurisdiction.assignments_for(level)
            if not assignments:
                failures[level] = "no-district-assignment"
                continue
            if timeout <= 0:
                failures[level] = "deadline-exceeded"
                continue
            tasks[asyncio.create_task(self._fetch_level(level, assignments))] = level

        if not tasks:
            return fetches, failures

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
            level = tasks[task]
            failures[level] = "timeout"
            logger.warning("representative fetch timed out zip=%s level=%s", jurisdiction.zip_code, level)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            level = tasks[task]
            exc = task.exception()
            if exc is not None:
                failures[level] = "fetch-error"
                logger.warning(
                    "representative fetch failed zip=%s level=%s: %s",
                    jurisdiction.zip_code,
                    level,
                    exc,
                )
                continue
            fetches[level] = task.result()
        return fetches, failures

    async def _fetch_level(self, level: str, assignments: list[DistrictAssignment]) -> _LevelFetch:
        fetch = _LevelFetch(level=level, version=self.directory.snapshot(level).version)
        for assignment in assignments:
            district_id = assignment.district_id
            if district_id in fetch.by_district:
                continue
            cached = await self.cache.get_representatives(level, district_id)
            if cached is not None:
                fetch.by_district[district_id] = cached
                continue
            fetch.by_district[district_id] = tuple(await self.directory.get_by_district(level, district_id))
            fetch.fetched.add(district_id)
        return fetch

    def _validate_levels(
        self,
        jurisdiction: Jurisdiction,
        fetches: dict[str, _LevelFetch],
        failures: dict[str, str],
    ) -> dict[str, LevelResult]:
        levels: dict[str, LevelResult] = {}
        for level in jurisdiction.ordered_levels():
            if level in failures:
                levels[level] = LevelResult(level=level, status="unavailable", reason=failures[level])
                continue

            accepted: list[Representative] = []
            rejected: list[QualityViolation] = []
            seen: set[str] = set()
            for district_id, rows in fetches[level].by_district.items():
                for record in rows:
                    if record.id in seen:
                        continue
                    seen.add(record.id)
                    verdict = self.gate.validate(record, jurisdiction=jurisdiction)
                    if verdict.accepted:
                        accepted.append(record)
                    else:
                        rejected.extend(verdict.violations)

            if rejected:
                levels[level] = LevelResult(
                    level=level,
                    status="unavailable",
                    records=tuple(accepted),
                    reason="quality-rejected",
                    rejected=tuple(rejected),
                )
            elif accepted:
                levels[level] = LevelResult(level=level, status="ok", records=tuple(accepted))
            else:
                levels[level] = LevelResult(level=level, status="empty")
        return levels


@contextmanager
def _stage(stage: Stage, zip_code: str) -> Iterator[None]:
    with tracer.start_as_current_span(f"resolve.{stage.value}") as span:
        span.set_attribute("zip_code", zip_code)
        yield


def build_geo_providers(
    settings: Settings,
    tables: ReferenceTables,
    client: httpx.AsyncClient | None = None,
) -> list[GeoProvider]:
    providers: list[GeoProvider] = []
    for name in settings.geo_providers:
        if name == "geocodio":
            if not settings.geocodio_api_key:
                logger.info("geo provider skipped provider=geocodio reason=missing_api_key")
                continue
            providers.append(
                GeocodioProvider(
                    api_key=settings.geocodio_api_key,
                    base_url=settings.geocodio_base_url,
                    timeout_seconds=settings.geocodio_timeout_seconds,
                    current_congress=settings.geocodio_current_congress,
                    client=client,
                )
            )
        elif name == "municipal_registry":
            if not settings.municipal_registry_url:
                logger.info("geo provider skipped provider=municipal_registry reason=missing_url")
                continue
            providers.append(
                MunicipalRegistryProvider(
                    base_url=settings.municipal_registry_url,
                    timeout_seconds=settings.municipal_registry_timeout_seconds,
                    client=client,
                )
            )
        elif name == "static_table":
            providers.append(StaticTableProvider(tables, timeout_seconds=settings.static_table_timeout_seconds))
        else:
            raise ValueError(f"unknown geo provider: {name}")
    return providers


def build_engine(settings: Settings) -> ResolutionEngine:
    tables = load_reference_tables(settings.reference_tables_path)
    client = httpx.AsyncClient(
        timeout=max(settings.geocodio_timeout_seconds, settings.municipal_registry_timeout_seconds)
    )
    backend = RedisCacheBackend.from_url(settings.cache_redis_url) if settings.cache_redis_url else None
    rules = load_quality_rules(path=settings.quality_rules_path, raw_json=settings.quality_rules_json)

    return ResolutionEngine(
        geo_chain=GeoLookupChain(
            build_geo_providers(settings, tables, client),
            confidence_floor=settings.geo_confidence_floor,
            allow_low_confidence_fallback=settings.geo_allow_low_confidence_fallback,
        ),
        mapper=DistrictMapper(load_boundary_table(settings.boundary_table_path)),
        directory=RepresentativeDirectory(load_snapshot_dir(settings.directory_snapshot_dir)),
        cache=ResolutionCache(
            ttl_seconds=settings.cache_ttl_seconds,
            representative_ttl_seconds=settings.representative_cache_ttl_seconds,
            backend=backend,
        ),
        gate=QualityGate(
            tables,
            rules,
            rules_path=settings.quality_rules_path,
            hot_reload=settings.quality_rules_hot_reload,
        ),
        tables=tables,
        level_fetch_timeout_seconds=settings.level_fetch_timeout_seconds,
        default_deadline_seconds=settings.default_deadline_seconds,
        batch_concurrency=settings.batch_concurrency,
        http_client=client,
    )


@lru_cache
def get_engine() -> ResolutionEngine:
    return build_engine(get_settings())
