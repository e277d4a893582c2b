from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from conftest import make_engine, make_representative
from civic_resolver.core.config import Settings, get_settings
from civic_resolver.main import app
from civic_resolver.services.aggregator import ResolutionEngine, get_engine
from civic_resolver.services.directory import RepresentativeDirectory
from civic_resolver.services.models import representative_to_dict

ADMIN_KEY = "admin-secret"


@pytest.fixture
def engine() -> ResolutionEngine:
    return make_engine()


@pytest.fixture
def api_client(engine: ResolutionEngine) -> TestClient:
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: Settings(admin_api_key=ADMIN_KEY)

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def _snapshot_body(version: int, **overrides: Any) -> dict[str, Any]:
    return {
        "version": version,
        "representatives": [representative_to_dict(make_representative(**overrides))],
    }


def test_get_jurisdiction_returns_bundle(api_client: TestClient) -> None:
    response = api_client.get("/jurisdictions/95814")
    assert response.status_code == 200

    body = response.json()
    assert body["status"] == "complete"
    assert body["from_cache"] is False
    assert body["jurisdiction"]["place_name"] == "Sacramento"
    assert body["jurisdiction"]["applicable_levels"] == ["federal", "state", "county", "municipal"]
    assert body["area"]["title"] == "City of Sacramento"
    assert set(body["representatives_by_level"]) == {"federal", "state", "county", "municipal"}
    state = body["representatives_by_level"]["state"]
    assert state["status"] == "ok"
    assert {row["district_id"] for row in state["records"]} == {"CA-SD-08", "CA-AD-07"}

    cached = api_client.get("/jurisdictions/95814-0000")
    assert cached.json()["from_cache"] is True


def test_get_jurisdiction_for_cdp_omits_municipal_level(api_client: TestClient) -> None:
    body = api_client.get("/jurisdictions/93241").json()
    assert body["jurisdiction"]["incorporation_status"] == "census_designated_place"
    assert "municipal" not in body["representatives_by_level"]
    assert body["area"]["title"] == "Lamont (Unincorporated)"


def test_get_jurisdiction_rejects_malformed_zip(api_client: TestClient) -> None:
    response = api_client.get("/jurisdictions/00000")
    assert response.status_code == 422
    assert response.json()["detail"]["zip_code"] == "00000"


def test_get_jurisdiction_unresolved_is_404_with_reason(api_client: TestClient) -> None:
    response = api_client.get("/jurisdictions/99999")
    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["zip_code"] == "99999"
    assert detail["reason"] == "no provider returned a candidate"
    assert detail["violations"] == []


def test_get_jurisdiction_validates_deadline(api_client: TestClient) -> None:
    assert api_client.get("/jurisdictions/95814", params={"deadline_ms": 0}).status_code == 422


def test_batch_resolution_reports_per_zip_outcomes(api_client: TestClient) -> None:
    response = api_client.post("/jurisdictions/batch", json={"zip_codes": ["95814", "abc", "93241"]})
    assert response.status_code == 200

    rows = response.json()
    assert [row["zip_code"] for row in rows] == ["95814", "abc", "93241"]
    assert rows[0]["bundle"]["jurisdiction"]["place_name"] == "Sacramento"
    assert rows[1]["bundle"] is None
    assert "abc" in rows[1]["error"]
    assert rows[2]["bundle"]["status"] == "complete"


def test_batch_requires_at_least_one_zip(api_client: TestClient) -> None:
    assert api_client.post("/jurisdictions/batch", json={"zip_codes": []}).status_code == 422


def test_publish_snapshot_requires_admin_key(api_client: TestClient) -> None:
    missing = api_client.put("/directory/state/snapshot", json=_snapshot_body(2))
    wrong = api_client.put("/directory/state/snapshot", json=_snapshot_body(2), headers={"X-API-Key": "nope"})
    assert missing.status_code == 401
    assert wrong.status_code == 401


def test_publish_snapshot_without_configured_key_is_unavailable(api_client: TestClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(admin_api_key=None)
    response = api_client.put(
        "/directory/state/snapshot", json=_snapshot_body(2), headers={"X-API-Key": ADMIN_KEY}
    )
    assert response.status_code == 503


def test_publish_snapshot_replaces_level_and_invalidates_cache(api_client: TestClient) -> None:
    headers = {"X-API-Key": ADMIN_KEY}
    before = api_client.get("/jurisdictions/95814").json()
    assert before["representatives_by_level"]["state"]["status"] == "ok"

    response = api_client.put("/directory/state/snapshot", json=_snapshot_body(2, name="Sam Ortiz"), headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["level"] == "state"
    assert body["version"] == 2
    assert body["records"] == 1
    assert body["previous_version"] == 1

    after = api_client.get("/jurisdictions/95814").json()
    assert [row["name"] for row in after["representatives_by_level"]["state"]["records"]] == ["Sam Ortiz"]

    status = api_client.get("/directory/status").json()
    assert status["state"]["version"] == 2
    assert status["county"]["refresh_cadence_days"] == 30


def test_publish_snapshot_conflicts(api_client: TestClient) -> None:
    headers = {"X-API-Key": ADMIN_KEY}
    stale = api_client.put("/directory/state/snapshot", json=_snapshot_body(1), headers=headers)
    wrong_level = api_client.put("/directory/county/snapshot", json=_snapshot_body(2), headers=headers)
    unknown_level = api_client.put("/directory/mayor/snapshot", json=_snapshot_body(2), headers=headers)

    assert stale.status_code == 409
    assert wrong_level.status_code == 409
    assert unknown_level.status_code == 422


def test_cache_stats_and_zip_invalidation(api_client: TestClient) -> None:
    headers = {"X-API-Key": ADMIN_KEY}
    api_client.get("/jurisdictions/95814")

    stats = api_client.get("/cache/stats").json()
    assert stats["misses"] >= 1
    assert stats["size"] >= 1

    assert api_client.delete("/cache/zip/95814").status_code == 401
    removed = api_client.delete("/cache/zip/95814-1234", headers=headers)
    assert removed.status_code == 200
    assert removed.json() == {"zip_code": "95814", "invalidated": True}

    again = api_client.delete("/cache/zip/95814", headers=headers)
    assert again.json()["invalidated"] is False
    assert api_client.delete("/cache/zip/abc", headers=headers).status_code == 422
    assert api_client.get("/jurisdictions/95814").json()["from_cache"] is False


def test_readyz_reports_directory_versions_and_providers(api_client: TestClient) -> None:
    response = api_client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "geo_providers": ["static_table"],
        "directory_versions": {"federal": 1, "state": 1, "county": 1, "municipal": 1},
        "stale_levels": [],
    }


def test_readyz_is_degraded_until_every_level_is_published(api_client: TestClient) -> None:
    app.dependency_overrides[get_engine] = lambda: make_engine(directory=RepresentativeDirectory())

    body = api_client.get("/readyz").json()
    assert body["status"] == "degraded"
    assert body["stale_levels"] == ["federal", "state", "county", "municipal"]
    assert set(body["directory_versions"].values()) == {0}
