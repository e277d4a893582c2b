from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import BOUNDARY_TABLE
from civic_resolver.services.districts import DistrictMapper, district_id_for, load_boundary_table, parse_boundary_table
from civic_resolver.services.models import DistrictHint, Jurisdiction


def _jurisdiction(zip_code: str = "95814", *, municipal: bool = True) -> Jurisdiction:
    levels = {"federal", "state", "county"} | ({"municipal"} if municipal else set())
    return Jurisdiction(
        zip_code=zip_code,
        place_name="Sacramento" if municipal else "Lamont",
        county="Sacramento County" if municipal else "Kern County",
        state="CA",
        incorporation_status="incorporated_city" if municipal else "census_designated_place",
        applicable_levels=frozenset(levels),
        confidence=0.9,
        source="static_table",
        provider="static_table",
        resolved_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize(
    ("level", "chamber", "kwargs", "expected"),
    [
        ("federal", "senate", {}, "CA"),
        ("federal", "house", {"number": "7"}, "CA-07"),
        ("state", "upper", {"number": "8"}, "CA-SD-08"),
        ("state", "lower", {"number": "7"}, "CA-AD-07"),
        ("county", "countywide", {"county": "Sacramento County"}, "CA:Sacramento County"),
        ("county", "supervisorial", {"county": "Sacramento County", "number": "3"}, "CA:Sacramento County:3"),
        ("municipal", "citywide", {"place": "Sacramento"}, "CA:Sacramento"),
        ("municipal", "council", {"place": "Sacramento", "number": "4"}, "CA:Sacramento:4"),
    ],
)
def test_district_id_for(level: str, chamber: str, kwargs: dict[str, str], expected: str) -> None:
    assert district_id_for(level, chamber, state="CA", **kwargs) == expected


def test_lower_chamber_outside_assembly_states_uses_house_code() -> None:
    assert district_id_for("state", "lower", state="OR", number="36") == "OR-HD-36"


def test_mapper_derives_at_large_assignments_without_boundary_data() -> None:
    jurisdiction = DistrictMapper().assign(_jurisdiction())

    assert [(row.level, row.chamber, row.district_id) for row in jurisdiction.districts] == [
        ("federal", "senate", "CA"),
        ("county", "countywide", "CA:Sacramento County"),
        ("municipal", "citywide", "CA:Sacramento"),
    ]
    assert all(row.source == "derived" for row in jurisdiction.districts)
    assert jurisdiction.alternate_districts == ()


def test_mapper_keeps_every_plausible_district_and_picks_highest_confidence_primary() -> None:
    hints = [
        DistrictHint("federal", "house", "7", 0.7),
        DistrictHint("federal", "house", "6", 0.3),
        DistrictHint("state", "upper", "8", 1.0),
    ]
    jurisdiction = DistrictMapper().assign(_jurisdiction(), hints, hint_source="geocodio")

    house = [row for row in jurisdiction.assignments_for("federal") if row.chamber == "house"]
    assert [row.district_id for row in house] == ["CA-07", "CA-06"]
    assert house[0] in jurisdiction.districts
    assert house[1] in jurisdiction.alternate_districts
    assert house[1].confidence == 0.3
    assert house[0].source == "geocodio"


def test_mapper_merges_boundary_table_and_hints_for_same_district() -> None:
    mapper = DistrictMapper(parse_boundary_table(BOUNDARY_TABLE))
    jurisdiction = mapper.assign(_jurisdiction(), [DistrictHint("federal", "house", "7", 0.6)], hint_source="geocodio")

    house = [row for row in jurisdiction.districts if row.slot == ("federal", "house")]
    assert len(house) == 1
    assert house[0].district_id == "CA-07"
    assert house[0].confidence == 1.0
    assert house[0].source == "boundary_table"
    assert not any(row.slot == ("federal", "house") for row in jurisdiction.alternate_districts)


def test_mapper_never_assigns_municipal_districts_to_unincorporated_places() -> None:
    table = parse_boundary_table(
        {"zips": {"93241": [{"level": "municipal", "chamber": "council", "district": "2"}]}}
    )
    jurisdiction = DistrictMapper(table).assign(_jurisdiction("93241", municipal=False))

    assert jurisdiction.assignments_for("municipal") == []
    assert {row.level for row in jurisdiction.districts} == {"federal", "county"}


def test_mapper_returns_new_jurisdiction() -> None:
    original = _jurisdiction()
    mapped = DistrictMapper().assign(original)
    assert original.districts == ()
    assert mapped is not original


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"zips": []},
        {"zips": {"95814": {"level": "federal"}}},
        {"zips": {"95814": [{"level": "federal", "chamber": "assembly", "district": "1"}]}},
        {"zips": {"95814": [{"level": "state", "chamber": "upper"}]}},
        {"zips": {"95814": [{"level": "state", "chamber": "upper", "district": "1", "confidence": "high"}]}},
    ],
)
def test_parse_boundary_table_rejects_malformed_documents(payload: object) -> None:
    with pytest.raises(ValueError):
        parse_boundary_table(payload)


def test_load_boundary_table_from_file(tmp_path) -> None:
    path = tmp_path / "boundaries.json"
    path.write_text('{"zips": {"95814": [{"level": "federal", "chamber": "house", "district": 7}]}}', encoding="utf-8")

    table = load_boundary_table(str(path))
    assert table.rows_for("95814")[0].number == "7"
    assert load_boundary_table(None).rows_for("95814") == ()
