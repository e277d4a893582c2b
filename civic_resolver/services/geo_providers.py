from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, Sequence

import httpx
from opentelemetry import trace

from civic_resolver.services.errors import InvalidZipCode, JurisdictionUnresolved, ProviderError, ProviderTimeout
from civic_resolver.services.models import DistrictHint, PlaceCandidate
from civic_resolver.services.reference_data import STATIC_TABLE_CONFIDENCE, ReferenceTables, normalize_state

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

USER_AGENT = "civic-resolver/1.0"
_ZIP_RE = re.compile(r"^(\d{5})(?:-?\d{4})?$")


class GeoProvider(Protocol):
    name: str
    timeout_seconds: float

    async def resolve(self, zip_code: str) -> PlaceCandidate | None: ...


@dataclass(slots=True)
class ProviderAttempt:
    provider: str
    outcome: str
    confidence: float | None = None
    detail: str | None = None


@dataclass(slots=True)
class GeoResolution:
    zip_code: str
    candidate: PlaceCandidate
    attempts: list[ProviderAttempt] = field(default_factory=list)


def normalize_zip_code(value: str) -> str:
    """Return the 5-digit ZIP for ``95814``, ``95814-1234`` or ``958141234``.

    The ``000`` prefix is unassigned by USPS and rejected along with any
    other malformed input.
    """
    raw = value.strip() if isinstance(value, str) else ""
    match = _ZIP_RE.match(raw)
    if match is None:
        raise InvalidZipCode(raw or str(value), "not a 5-digit U.S. ZIP code")
    zip_code = match.group(1)
    if zip_code.startswith("000"):
        raise InvalidZipCode(zip_code, "reserved ZIP prefix 000")
    return zip_code


class GeocodioProvider:
    name = "geocodio"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.geocod.io/v1.7",
        timeout_seconds: float = 4.0,
        current_congress: int = 119,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.current_congress = current_congress
        self._client = client

    async def resolve(self, zip_code: str) -> PlaceCandidate | None:
        params = {"postal_code": zip_code, "fields": "cd,stateleg", "api_key": self.api_key}
        url = f"{self.base_url}/geocode"
        if self._client is not None:
            response = await self._client.get(url, params=params, headers={"User-Agent": USER_AGENT})
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, params=params, headers={"User-Agent": USER_AGENT})

        if response.status_code == 422:
            return None
        if response.status_code in {401, 403}:
            raise ProviderError(self.name, "invalid api key", status_code=response.status_code)
        if response.status_code != 200:
            raise ProviderError(self.name, "unexpected response", status_code=response.status_code)

        payload = response.json()
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            return None

        candidates = [
            candidate
            for candidate in (self._parse_result(raw, zip_code) for raw in results if isinstance(raw, dict))
            if candidate is not None
        ]
        if not candidates:
            return None
        ranked = sorted(candidates, key=lambda row: (-row.confidence, -row.completeness))
        return ranked[0]

    def _parse_result(self, raw: dict[str, Any], zip_code: str) -> PlaceCandidate | None:
        components = raw.get("address_components")
        if not isinstance(components, dict):
            return None
        returned_zip = _as_text(components.get("zip"))
        if returned_zip and returned_zip[:5] != zip_code:
            return None

        fields = raw.get("fields") if isinstance(raw.get("fields"), dict) else {}
        county_field = fields.get("county") if isinstance(fields.get("county"), dict) else {}
        location = raw.get("location") if isinstance(raw.get("location"), dict) else {}

        return PlaceCandidate(
            city=_as_text(components.get("city")),
            county=_as_text(county_field.get("name")) or _as_text(components.get("county")),
            state=normalize_state(_as_text(components.get("state"))),
            provider=self.name,
            confidence=_clamp_confidence(raw.get("accuracy")),
            latitude=_as_float(location.get("lat")),
            longitude=_as_float(location.get("lng")),
            district_hints=self._parse_district_hints(fields),
        )

    def _parse_district_hints(self, fields: dict[str, Any]) -> tuple[DistrictHint, ...]:
        hints: list[DistrictHint] = []
        for raw in fields.get("congressional_districts") or []:
            if not isinstance(raw, dict) or not self._is_current_congress(raw):
                continue
            number = _as_district_number(raw.get("district_number"))
            if number is None:
                continue
            hints.append(DistrictHint("federal", "house", number, _clamp_confidence(raw.get("proportion", 1.0))))

        state_legislative = fields.get("state_legislative_districts")
        if isinstance(state_legislative, dict):
            for raw_chamber, chamber in (("senate", "upper"), ("house", "lower")):
                for raw in state_legislative.get(raw_chamber) or []:
                    if not isinstance(raw, dict):
                        continue
                    number = _as_district_number(raw.get("district_number"))
                    if number is None:
                        continue
                    hints.append(
                        DistrictHint("state", chamber, number, _clamp_confidence(raw.get("proportion", 1.0)))
                    )
        return tuple(hints)

    def _is_current_congress(self, raw: dict[str, Any]) -> bool:
        numbers = raw.get("congress_numbers")
        if isinstance(numbers, list):
            return self.current_congress in numbers
        number = raw.get("congress_number")
        if number is None:
            return True
        try:
            return int(number) == self.current_congress
        except (TypeError, ValueError):
            return False


class MunicipalRegistryProvider:
    name = "municipal_registry"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def resolve(self, zip_code: str) -> PlaceCandidate | None:
        url = f"{self.base_url}/zip/{zip_code}"
        if self._client is not None:
            response = await self._client.get(url, headers={"User-Agent": USER_AGENT})
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, headers={"User-Agent": USER_AGENT})

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ProviderError(self.name, "unexpected response", status_code=response.status_code)

        payload = response.json()
        if not isinstance(payload, dict):
            return None
        return PlaceCandidate(
            city=_as_text(payload.get("city")),
            county=_as_text(payload.get("county")),
            state=normalize_state(_as_text(payload.get("state"))),
            provider=self.name,
            confidence=_clamp_confidence(payload.get("confidence")),
            latitude=_as_float(payload.get("latitude")),
            longitude=_as_float(payload.get("longitude")),
        )


class StaticTableProvider:
    name = "static_table"

    def __init__(self, tables: ReferenceTables, *, timeout_seconds: float = 0.5) -> None:
        self.tables = tables
        self.timeout_seconds = timeout_seconds

    async def resolve(self, zip_code: str) -> PlaceCandidate | None:
        place = self.tables.zip_table.get(zip_code)
        if place is None:
            return None
        return PlaceCandidate(
            city=place.city,
            county=place.county,
            state=place.state,
            provider=self.name,
            confidence=STATIC_TABLE_CONFIDENCE,
            latitude=place.latitude,
            longitude=place.longitude,
        )


class GeoLookupChain:
    """Strict priority fallback over the configured providers.

    The first complete candidate at or above ``confidence_floor`` wins. A
    below-floor candidate is only returned, re-tagged as ``fallback``, when
    ``allow_low_confidence_fallback`` is set; otherwise the call fails with
    ``JurisdictionUnresolved``.
    """

    def __init__(
        self,
        providers: Sequence[GeoProvider],
        *,
        confidence_floor: float = 0.5,
        allow_low_confidence_fallback: bool = False,
    ) -> None:
        self.providers = list(providers)
        self.confidence_floor = confidence_floor
        self.allow_low_confidence_fallback = allow_low_confidence_fallback

    async def resolve(self, zip_code: str, *, deadline: float | None = None) -> GeoResolution:
        loop = asyncio.get_running_loop()
        attempts: list[ProviderAttempt] = []
        below_floor: list[tuple[int, PlaceCandidate]] = []

        for priority, provider in enumerate(self.providers):
            timeout_seconds = provider.timeout_seconds
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    attempts.append(ProviderAttempt(provider.name, "skipped_deadline"))
                    continue
                timeout_seconds = min(timeout_seconds, remaining)

            with tracer.start_as_current_span("geo.provider") as span:
                span.set_attribute("geo.provider", provider.name)
                try:
                    candidate = await self._call_provider(provider, zip_code, timeout_seconds)
                except ProviderTimeout as exc:
                    logger.warning("geo provider timed out zip=%s provider=%s: %s", zip_code, provider.name, exc)
                    attempts.append(ProviderAttempt(provider.name, "timeout", detail=str(exc)))
                    continue
                except (ProviderError, httpx.HTTPError, ValueError) as exc:
                    logger.warning("geo provider failed zip=%s provider=%s: %s", zip_code, provider.name, exc)
                    attempts.append(ProviderAttempt(provider.name, "error", detail=str(exc)))
                    continue

                if candidate is None:
                    attempts.append(ProviderAttempt(provider.name, "not_found"))
                    continue
                if candidate.provider != provider.name:
                    candidate = replace(candidate, provider=provider.name)
                span.set_attribute("geo.confidence", candidate.confidence)

            if not candidate.is_complete:
                attempts.append(ProviderAttempt(provider.name, "incomplete", confidence=candidate.confidence))
                continue
            if candidate.confidence >= self.confidence_floor:
                attempts.append(ProviderAttempt(provider.name, "accepted", confidence=candidate.confidence))
                logger.info(
                    "geo provider accepted zip=%s provider=%s confidence=%.3f",
                    zip_code,
                    provider.name,
                    candidate.confidence,
                )
                return GeoResolution(zip_code=zip_code, candidate=candidate, attempts=attempts)

            attempts.append(ProviderAttempt(provider.name, "below_floor", confidence=candidate.confidence))
            below_floor.append((priority, candidate))

        if below_floor and self.allow_low_confidence_fallback:
            _, best = sorted(below_floor, key=lambda row: (-row[1].confidence, row[0]))[0]
            logger.warning(
                "geo resolution using low-confidence fallback zip=%s provider=%s confidence=%.3f",
                zip_code,
                best.provider,
                best.confidence,
            )
            return GeoResolution(zip_code=zip_code, candidate=best.as_fallback(), attempts=attempts)

        reason = "no candidate cleared the confidence floor" if below_floor else "no provider returned a candidate"
        raise JurisdictionUnresolved(zip_code, reason)

    @staticmethod
    async def _call_provider(provider: GeoProvider, zip_code: str, timeout_seconds: float) -> PlaceCandidate | None:
        try:
            return await asyncio.wait_for(provider.resolve(zip_code), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(provider.name, timeout_seconds) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(provider.name, timeout_seconds) from exc


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_district_number(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if number <= 0:
        return None
    return str(number)


def _clamp_confidence(value: Any) -> float:
    parsed = _as_float(value)
    if parsed is None:
        return 0.0
    return min(1.0, max(0.0, parsed))
