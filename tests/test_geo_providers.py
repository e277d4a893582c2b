from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from conftest import CountingProvider
from civic_resolver.services.errors import InvalidZipCode, JurisdictionUnresolved, ProviderError
from civic_resolver.services.geo_providers import (
    GeocodioProvider,
    GeoLookupChain,
    MunicipalRegistryProvider,
    StaticTableProvider,
    normalize_zip_code,
)
from civic_resolver.services.models import PlaceCandidate
from civic_resolver.services.reference_data import ReferenceTables


def _candidate(provider: str, confidence: float, city: str = "Sacramento") -> PlaceCandidate:
    return PlaceCandidate(
        city=city,
        county="Sacramento County",
        state="CA",
        provider=provider,
        confidence=confidence,
    )


GEOCODIO_PAYLOAD: dict[str, Any] = {
    "input": {"postal_code": "95814"},
    "results": [
        {
            "address_components": {"city": "Sacramento", "county": "Sacramento County", "state": "CA", "zip": "95814"},
            "location": {"lat": 38.5804, "lng": -121.4944},
            "accuracy": 0.8,
            "fields": {
                "congressional_districts": [
                    {"district_number": 7, "congress_number": 119, "proportion": 0.9},
                    {"district_number": 6, "congress_number": 119, "proportion": 0.1},
                    {"district_number": 7, "congress_number": 118, "proportion": 1.0},
                ],
                "state_legislative_districts": {
                    "senate": [{"district_number": "8", "proportion": 1}],
                    "house": [{"district_number": "7", "proportion": 1}],
                },
            },
        },
        {
            "address_components": {"city": "Sacramento", "state": "CA", "zip": "95814"},
            "location": {"lat": 38.58, "lng": -121.49},
            "accuracy": 0.8,
            "fields": {},
        },
    ],
}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("95814", "95814"), (" 95814 ", "95814"), ("95814-1234", "95814"), ("958141234", "95814")],
)
def test_normalize_zip_code_accepts_five_digit_and_zip_plus_four(raw: str, expected: str) -> None:
    assert normalize_zip_code(raw) == expected


@pytest.mark.parametrize("raw", ["00000", "00012", "9581", "95814-12", "abcde", ""])
def test_normalize_zip_code_rejects_invalid_input(raw: str) -> None:
    with pytest.raises(InvalidZipCode):
        normalize_zip_code(raw)


def test_geocodio_provider_parses_best_result_and_current_congress_hints() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code=200, json=GEOCODIO_PAYLOAD, request=request)

    async def run() -> PlaceCandidate | None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GeocodioProvider(api_key="key-1", base_url="https://geo.test/v1.7", client=client)
            return await provider.resolve("95814")

    candidate = asyncio.run(run())
    assert candidate is not None
    assert candidate.county == "Sacramento County"
    assert candidate.confidence == 0.8
    assert candidate.provider == "geocodio"
    assert seen[0].url.path == "/v1.7/geocode"
    assert seen[0].url.params["postal_code"] == "95814"
    assert seen[0].url.params["fields"] == "cd,stateleg"

    hints = {(hint.level, hint.chamber, hint.district_number): hint.proportion for hint in candidate.district_hints}
    assert hints == {
        ("federal", "house", "7"): 0.9,
        ("federal", "house", "6"): 0.1,
        ("state", "upper", "8"): 1.0,
        ("state", "lower", "7"): 1.0,
    }


def test_geocodio_provider_returns_none_for_unknown_postal_code() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=422, json={"error": "Could not geocode"}, request=request)

    async def run() -> PlaceCandidate | None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await GeocodioProvider(api_key="key-1", client=client).resolve("99999")

    assert asyncio.run(run()) is None


def test_geocodio_provider_raises_on_rejected_api_key() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=403, json={"error": "Invalid API key"}, request=request)

    async def run() -> PlaceCandidate | None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await GeocodioProvider(api_key="bad", client=client).resolve("95814")

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(run())
    assert exc_info.value.status_code == 403


def test_municipal_registry_provider_maps_payload_and_404() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/registry/zip/91001":
            return httpx.Response(
                status_code=200,
                json={
                    "city": "Altadena",
                    "county": "Los Angeles County",
                    "state": "California",
                    "latitude": 34.19,
                    "longitude": -118.13,
                    "confidence": 0.7,
                },
                request=request,
            )
        return httpx.Response(status_code=404, request=request)

    async def run() -> tuple[PlaceCandidate | None, PlaceCandidate | None]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = MunicipalRegistryProvider(base_url="https://registry.test/registry/", client=client)
            return await provider.resolve("91001"), await provider.resolve("10001")

    found, missing = asyncio.run(run())
    assert found is not None
    assert found.state == "CA"
    assert found.city == "Altadena"
    assert found.confidence == 0.7
    assert missing is None


def test_static_table_provider_uses_bundled_table() -> None:
    provider = StaticTableProvider(ReferenceTables())
    candidate = asyncio.run(provider.resolve("93241"))
    assert candidate is not None
    assert candidate.city == "Lamont"
    assert candidate.county == "Kern County"
    assert asyncio.run(provider.resolve("99999")) is None


def test_chain_accepts_first_candidate_above_floor_and_stops() -> None:
    first = CountingProvider("primary", _candidate("primary", 0.9))
    second = CountingProvider("secondary", _candidate("secondary", 0.95))
    chain = GeoLookupChain([first, second], confidence_floor=0.5)

    resolution = asyncio.run(chain.resolve("95814"))
    assert resolution.candidate.provider == "primary"
    assert first.calls == 1
    assert second.calls == 0
    assert [attempt.outcome for attempt in resolution.attempts] == ["accepted"]


def test_chain_skips_timeouts_and_errors_without_retrying() -> None:
    slow = CountingProvider("slow", _candidate("slow", 0.99), delay=0.5, timeout_seconds=0.01)
    broken = CountingProvider("broken", error=ProviderError("broken", "boom", status_code=500))
    good = CountingProvider("good", _candidate("good", 0.7))
    chain = GeoLookupChain([slow, broken, good])

    resolution = asyncio.run(chain.resolve("95814"))
    assert resolution.candidate.provider == "good"
    assert [attempt.outcome for attempt in resolution.attempts] == ["timeout", "error", "accepted"]
    assert (slow.calls, broken.calls, good.calls) == (1, 1, 1)


def test_chain_below_floor_is_unresolved_when_fallback_disabled() -> None:
    weak = CountingProvider("weak", _candidate("weak", 0.3))
    chain = GeoLookupChain([weak], confidence_floor=0.5)

    with pytest.raises(JurisdictionUnresolved) as exc_info:
        asyncio.run(chain.resolve("95814"))
    assert "confidence floor" in exc_info.value.reason


def test_chain_fallback_is_tagged_and_prefers_priority_on_ties() -> None:
    first = CountingProvider("first", _candidate("first", 0.4, city="Sacramento"))
    second = CountingProvider("second", _candidate("second", 0.4, city="West Sacramento"))
    chain = GeoLookupChain([first, second], confidence_floor=0.5, allow_low_confidence_fallback=True)

    resolution = asyncio.run(chain.resolve("95814"))
    assert resolution.candidate.provider == "first"
    assert resolution.candidate.source == "fallback"
    assert resolution.candidate.effective_source == "fallback"


def test_chain_without_any_candidate_never_synthesizes_a_place() -> None:
    chain = GeoLookupChain([CountingProvider("empty"), CountingProvider("also-empty")])

    with pytest.raises(JurisdictionUnresolved) as exc_info:
        asyncio.run(chain.resolve("95814"))
    assert exc_info.value.reason == "no provider returned a candidate"


def test_chain_skips_incomplete_candidates() -> None:
    partial = CountingProvider(
        "partial",
        PlaceCandidate(city="Sacramento", county=None, state="CA", provider="partial", confidence=0.95),
    )
    complete = CountingProvider("complete", _candidate("complete", 0.6))
    resolution = asyncio.run(GeoLookupChain([partial, complete]).resolve("95814"))
    assert resolution.candidate.provider == "complete"
    assert resolution.attempts[0].outcome == "incomplete"


def test_chain_caps_provider_timeout_by_caller_deadline() -> None:
    slow = CountingProvider("slow", _candidate("slow", 0.9), delay=0.5, timeout_seconds=5.0)

    async def run() -> None:
        loop = asyncio.get_running_loop()
        await GeoLookupChain([slow]).resolve("95814", deadline=loop.time() + 0.05)

    with pytest.raises(JurisdictionUnresolved):
        asyncio.run(run())
    assert slow.calls == 1


def test_chain_skips_providers_once_deadline_has_passed() -> None:
    provider = CountingProvider("primary", _candidate("primary", 0.9))

    async def run() -> None:
        loop = asyncio.get_running_loop()
        await GeoLookupChain([provider]).resolve("95814", deadline=loop.time() - 1.0)

    with pytest.raises(JurisdictionUnresolved):
        asyncio.run(run())
    assert provider.calls == 0


def test_chain_attributes_candidate_to_the_provider_that_returned_it() -> None:
    registry = CountingProvider("registry", _candidate("spoofed", 0.9))
    resolution = asyncio.run(GeoLookupChain([registry]).resolve("95814"))
    assert resolution.candidate.provider == "registry"

    weak = CountingProvider("weak", _candidate("stub", 0.3))
    chain = GeoLookupChain([weak], confidence_floor=0.5, allow_low_confidence_fallback=True)
    assert asyncio.run(chain.resolve("95814")).candidate.provider == "weak"
