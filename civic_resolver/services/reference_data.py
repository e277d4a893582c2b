"""Static reference tables used by the offline geo provider and the classifier.

The bundled tables only cover places the engine has verified; anything not
listed here must come from a live provider. ``load_reference_tables`` merges
an optional JSON document on top of the bundled data so deployments can
extend coverage without a code change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

STATIC_TABLE_CONFIDENCE = 0.9

STATE_NAMES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

# Administrative suffix a county-equivalent name must carry, per state.
COUNTY_SUFFIXES: dict[str, tuple[str, ...]] = {
    "LA": ("Parish",),
    "AK": ("Borough", "Census Area", "Municipality", "City and Borough"),
    "VA": ("County", "city"),
}
DEFAULT_COUNTY_SUFFIXES: tuple[str, ...] = ("County",)

INCORPORATED_PLACES: dict[str, frozenset[str]] = {
    "CA": frozenset(
        {
            "Anaheim", "Bakersfield", "Berkeley", "Beverly Hills", "Burbank",
            "Chula Vista", "Citrus Heights", "Compton", "Concord", "Corona",
            "Davis", "Downey", "East Palo Alto", "Elk Grove", "Escondido",
            "Folsom", "Fontana", "Fremont", "Fresno", "Fullerton",
            "Garden Grove", "Glendale", "Hayward", "Huntington Beach", "Inglewood",
            "Irvine", "Lancaster", "Long Beach", "Los Angeles", "Malibu",
            "Modesto", "Moreno Valley", "Oakland", "Oceanside", "Ontario",
            "Orange", "Oxnard", "Palmdale", "Palo Alto", "Pasadena",
            "Pomona", "Rancho Cordova", "Rancho Cucamonga", "Riverside", "Roseville",
            "Sacramento", "Salinas", "San Bernardino", "San Diego", "San Francisco",
            "San Jose", "Santa Ana", "Santa Clara", "Santa Clarita", "Santa Cruz",
            "Santa Monica", "Santa Rosa", "Simi Valley", "Stockton", "Sunnyvale",
            "Thousand Oaks", "Torrance", "Vallejo", "Victorville", "Visalia",
            "West Sacramento",
        }
    ),
}

CENSUS_DESIGNATED_PLACES: dict[str, frozenset[str]] = {
    "CA": frozenset(
        {
            "Altadena", "Antelope", "Arden-Arcade", "Carmichael", "Castro Valley",
            "East Los Angeles", "Fair Oaks", "Florin", "Foothill Farms", "Hacienda Heights",
            "Isla Vista", "Ladera Heights", "Lamont", "Marina del Rey", "North Highlands",
            "Orangevale", "Rowland Heights", "Valinda", "View Park-Windsor Hills", "Walnut Park",
            "West Athens",
        }
    ),
}


@dataclass(slots=True, frozen=True)
class StaticPlace:
    city: str
    county: str
    state: str
    latitude: float | None = None
    longitude: float | None = None


STATIC_ZIP_TABLE: dict[str, StaticPlace] = {
    "90022": StaticPlace("East Los Angeles", "Los Angeles County", "CA", 34.0239, -118.1552),
    "90210": StaticPlace("Beverly Hills", "Los Angeles County", "CA", 34.0901, -118.4065),
    "91001": StaticPlace("Altadena", "Los Angeles County", "CA", 34.1897, -118.1312),
    "91101": StaticPlace("Pasadena", "Los Angeles County", "CA", 34.1478, -118.1445),
    "91745": StaticPlace("Hacienda Heights", "Los Angeles County", "CA", 33.9930, -117.9687),
    "92101": StaticPlace("San Diego", "San Diego County", "CA", 32.7157, -117.1611),
    "93241": StaticPlace("Lamont", "Kern County", "CA", 35.2597, -118.9143),
    "94102": StaticPlace("San Francisco", "San Francisco County", "CA", 37.7793, -122.4193),
    "94546": StaticPlace("Castro Valley", "Alameda County", "CA", 37.6941, -122.0864),
    "95060": StaticPlace("Santa Cruz", "Santa Cruz County", "CA", 36.9741, -122.0308),
    "95110": StaticPlace("San Jose", "Santa Clara County", "CA", 37.3382, -121.8863),
    "95608": StaticPlace("Carmichael", "Sacramento County", "CA", 38.6171, -121.3283),
    "95814": StaticPlace("Sacramento", "Sacramento County", "CA", 38.5804, -121.4944),
    "95815": StaticPlace("Sacramento", "Sacramento County", "CA", 38.6093, -121.4443),
    "95816": StaticPlace("Sacramento", "Sacramento County", "CA", 38.5725, -121.4679),
}


@dataclass(slots=True)
class ReferenceTables:
    incorporated_places: dict[str, frozenset[str]] = field(default_factory=lambda: dict(INCORPORATED_PLACES))
    census_designated_places: dict[str, frozenset[str]] = field(
        default_factory=lambda: dict(CENSUS_DESIGNATED_PLACES)
    )
    zip_table: dict[str, StaticPlace] = field(default_factory=lambda: dict(STATIC_ZIP_TABLE))
    county_suffixes: dict[str, tuple[str, ...]] = field(default_factory=lambda: dict(COUNTY_SUFFIXES))

    def has_authority(self, state: str) -> bool:
        return state in self.incorporated_places

    def suffixes_for(self, state: str) -> tuple[str, ...]:
        return self.county_suffixes.get(state, DEFAULT_COUNTY_SUFFIXES)


def normalize_state(value: str | None) -> str | None:
    if not value:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    upper = stripped.upper()
    if upper in STATE_NAMES:
        return upper
    for code, name in STATE_NAMES.items():
        if name.casefold() == stripped.casefold():
            return code
    return None


def load_reference_tables(path: str | None = None) -> ReferenceTables:
    tables = ReferenceTables()
    if not path:
        return tables

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("reference table document must be a JSON object")

    for state, names in _state_name_lists(payload.get("incorporated_places")).items():
        tables.incorporated_places[state] = tables.incorporated_places.get(state, frozenset()) | names
    for state, names in _state_name_lists(payload.get("census_designated_places")).items():
        tables.census_designated_places[state] = tables.census_designated_places.get(state, frozenset()) | names

    raw_zips = payload.get("zip_table")
    if isinstance(raw_zips, dict):
        for zip_code, raw in raw_zips.items():
            place = _static_place(raw)
            if place is not None and isinstance(zip_code, str):
                tables.zip_table[zip_code.strip()] = place
    return tables


def _state_name_lists(raw: Any) -> dict[str, frozenset[str]]:
    if not isinstance(raw, dict):
        return {}
    parsed: dict[str, frozenset[str]] = {}
    for raw_state, raw_names in raw.items():
        state = normalize_state(raw_state) if isinstance(raw_state, str) else None
        if state is None or not isinstance(raw_names, list):
            continue
        parsed[state] = frozenset(name.strip() for name in raw_names if isinstance(name, str) and name.strip())
    return parsed


def _static_place(raw: Any) -> StaticPlace | None:
    if not isinstance(raw, dict):
        return None
    city = raw.get("city")
    county = raw.get("county")
    state = normalize_state(raw.get("state"))
    if not isinstance(city, str) or not isinstance(county, str) or state is None:
        return None
    return StaticPlace(
        city=city.strip(),
        county=county.strip(),
        state=state,
        latitude=_as_float(raw.get("latitude")),
        longitude=_as_float(raw.get("longitude")),
    )


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
