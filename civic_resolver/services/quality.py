"""Single chokepoint every outgoing record passes through.

Rejection is final: a rejected record is logged with its violations and
dropped, never replaced with a substitute. Rules are data (``QualityRules``)
so deployments can extend the denylist from JSON without a code change.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Pattern

from civic_resolver.services.directory import REFRESH_CADENCE_DAYS, STALE_AFTER_CADENCES
from civic_resolver.services.errors import QualityRejected
from civic_resolver.services.models import (
    LEVELS,
    Jurisdiction,
    QualityViolation,
    Representative,
    utcnow,
)
from civic_resolver.services.reference_data import ReferenceTables

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@([^\s@]+\.[^\s@]+)$")
_PHONE_RE = re.compile(r"^\+?1?[-.\s]?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})$")

_OFFICE_WORD = (
    r"(?:state|u\.?\s?s\.?|united|states|federal|congressional|assembly|senate|house|city|county|town|village|"
    r"borough|parish|board|of|the|at[- ]large|senator|representative|rep\.?|assemblymember|member|council|"
    r"councilmember|councilor|councillor|alderman|alderwoman|delegate|supervisor|commissioner|mayor|"
    r"legislator|congressman|congresswoman|official|district|seat|ward|dist\.?|no\.?)"
)

DEFAULT_PLACEHOLDER_NAME_PATTERNS: tuple[str, ...] = (
    # Only office or jurisdiction words, optionally ending in a seat number.
    rf"^(?:{_OFFICE_WORD}[\s,-]+)*{_OFFICE_WORD}(?:[\s,-]*#?\s*\d+[a-z]?)?$",
    rf"^(?:{_OFFICE_WORD}[\s,-]+)*#?\s*\d+[a-z]?$",
    r"^(district|seat|ward)\s*#?\s*\d+\s+\S.*$",
    r"^(your|local|sample|test|example|demo|fake|dummy)\s+"
    r"(senator|representative|supervisor|council\s*member|councilmember|mayor|official|legislator)$",
    r"^(mayor|council\s*member|councilmember|supervisor|senator|representative|commissioner)\s+(of|for)\s+\S.*$",
    r"^(john|jane)\s+(doe|smith|roe)$",
    r"^\[(name|title)\]$",
)
DEFAULT_PLACEHOLDER_TOKENS: tuple[str, ...] = ("TBD", "TBA", "Placeholder", "Demo", "Lorem ipsum", "Unknown")
DEFAULT_PLACEHOLDER_EMAIL_DOMAINS: tuple[str, ...] = ("example.com", "example.org", "example.net", "test.com")
DEFAULT_GENERIC_PLACE_PATTERNS: tuple[str, ...] = (
    r"\barea$",
    r"^united states( of america)?$",
    r"^(city|town|county|unknown city)$",
)
DEFAULT_FALLBACK_PLACE_PATTERNS: tuple[str, ...] = (r"^unincorporated\b",)


@dataclass(slots=True, frozen=True)
class QualityRules:
    placeholder_name_patterns: tuple[Pattern[str], ...]
    placeholder_tokens: tuple[str, ...]
    placeholder_email_domains: frozenset[str]
    placeholder_phone_numbers: frozenset[str]
    generic_place_patterns: tuple[Pattern[str], ...]
    fallback_place_patterns: tuple[Pattern[str], ...]
    stale_after_days: int = 30
    stale_after_days_by_level: dict[str, int] = field(default_factory=dict)
    term_expiry_warning_days: int = 90
    fallback_min_confidence: float = 0.3

    def stale_after(self, level: str) -> timedelta:
        return timedelta(days=self.stale_after_days_by_level.get(level, self.stale_after_days))


@dataclass(slots=True)
class QualityResult:
    record_key: str
    accepted: bool
    violations: list[QualityViolation] = field(default_factory=list)
    warnings: list[QualityViolation] = field(default_factory=list)

    def raise_for_rejection(self) -> None:
        if not self.accepted:
            raise QualityRejected(self.record_key, self.violations)


def default_quality_rules() -> QualityRules:
    return parse_quality_rules({})


def default_stale_after_days_by_level() -> dict[str, int]:
    """A record is stale once it is older than two refresh cycles of its level."""
    return {level: days * STALE_AFTER_CADENCES for level, days in REFRESH_CADENCE_DAYS.items()}


def parse_quality_rules(raw: Any) -> QualityRules:
    """Build rules from a JSON object; missing keys keep the defaults.

    List-valued keys replace the default list unless suffixed ``_extra``, in
    which case they are appended (``placeholder_tokens_extra`` etc.).
    """
    if not isinstance(raw, dict):
        raise ValueError("quality rules must be a JSON object")

    def merged(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
        base = _coerce_str_tuple(raw[key], key) if key in raw else default
        extra = _coerce_str_tuple(raw.get(f"{key}_extra", []), f"{key}_extra")
        return tuple(dict.fromkeys(base + extra))

    by_level = raw.get("stale_after_days_by_level", {})
    if not isinstance(by_level, dict) or any(level not in LEVELS for level in by_level):
        raise ValueError("stale_after_days_by_level must map known levels to day counts")
    # A flat stale_after_days applies to every level it does not name.
    stale_by_level = {} if "stale_after_days" in raw else default_stale_after_days_by_level()
    stale_by_level.update(
        {
            level: _as_positive_int(days, default=30, key=f"stale_after_days_by_level.{level}")
            for level, days in by_level.items()
        }
    )

    return QualityRules(
        placeholder_name_patterns=_compile_all(merged("placeholder_name_patterns", DEFAULT_PLACEHOLDER_NAME_PATTERNS)),
        placeholder_tokens=merged("placeholder_tokens", DEFAULT_PLACEHOLDER_TOKENS),
        placeholder_email_domains=frozenset(
            domain.casefold() for domain in merged("placeholder_email_domains", DEFAULT_PLACEHOLDER_EMAIL_DOMAINS)
        ),
        placeholder_phone_numbers=frozenset(
            _phone_digits(number) for number in merged("placeholder_phone_numbers", ())
        ),
        generic_place_patterns=_compile_all(merged("generic_place_patterns", DEFAULT_GENERIC_PLACE_PATTERNS)),
        fallback_place_patterns=_compile_all(merged("fallback_place_patterns", DEFAULT_FALLBACK_PLACE_PATTERNS)),
        stale_after_days=_as_positive_int(raw.get("stale_after_days"), default=30, key="stale_after_days"),
        stale_after_days_by_level=stale_by_level,
        term_expiry_warning_days=_as_positive_int(
            raw.get("term_expiry_warning_days"), default=90, key="term_expiry_warning_days"
        ),
        fallback_min_confidence=_as_confidence(raw.get("fallback_min_confidence"), default=0.3),
    )


def load_quality_rules(*, path: str | None = None, raw_json: str | None = None) -> QualityRules:
    if path:
        return parse_quality_rules(json.loads(Path(path).read_text(encoding="utf-8")))
    if raw_json:
        return parse_quality_rules(json.loads(raw_json))
    return default_quality_rules()


class QualityGate:
    def __init__(
        self,
        tables: ReferenceTables,
        rules: QualityRules | None = None,
        *,
        rules_path: str | None = None,
        hot_reload: bool = False,
    ) -> None:
        self.tables = tables
        self.rules = rules or load_quality_rules(path=rules_path)
        self.rules_path = rules_path
        self.hot_reload = hot_reload and bool(rules_path)
        self._rules_mtime = _mtime(rules_path) if self.hot_reload else None

    def validate(
        self,
        record: Representative | Jurisdiction,
        *,
        jurisdiction: Jurisdiction | None = None,
        now: datetime | None = None,
    ) -> QualityResult:
        self._maybe_reload()
        current = now or utcnow()
        if isinstance(record, Jurisdiction):
            result = self._validate_jurisdiction(record)
        elif isinstance(record, Representative):
            result = self._validate_representative(record, jurisdiction, current)
        else:
            raise TypeError(f"unsupported record type: {type(record).__name__}")

        if not result.accepted:
            logger.warning(
                "quality gate rejected record=%s violations=%s",
                result.record_key,
                "; ".join(f"{row.field}={row.rule}" for row in result.violations),
            )
        elif result.warnings:
            logger.info(
                "quality gate accepted with warnings record=%s warnings=%s",
                result.record_key,
                "; ".join(f"{row.field}={row.rule}" for row in result.warnings),
            )
        return result

    def _validate_jurisdiction(self, record: Jurisdiction) -> QualityResult:
        rules = self.rules
        violations: list[QualityViolation] = []

        if _matches_any(record.place_name, rules.generic_place_patterns):
            violations.append(QualityViolation("place_name", "forbidden-value: generic-place-name", record.place_name))
        for field_name, value in (("place_name", record.place_name), ("county", record.county)):
            token = _find_token(value, rules.placeholder_tokens)
            if token is not None:
                violations.append(QualityViolation(field_name, "forbidden-value: placeholder-token", value))

        suffixes = self.tables.suffixes_for(record.state)
        if not any(record.county.endswith(f" {suffix}") for suffix in suffixes):
            violations.append(QualityViolation("county", "forbidden-value: county-suffix-missing", record.county))

        missing_base = [level for level in ("federal", "state", "county") if level not in record.applicable_levels]
        if missing_base:
            violations.append(
                QualityViolation("applicable_levels", "inconsistent-level: base-level-missing", missing_base)
            )
        municipal = "municipal" in record.applicable_levels
        if municipal != (record.incorporation_status == "incorporated_city"):
            violations.append(
                QualityViolation(
                    "applicable_levels",
                    "inconsistent-level: municipal-applicability",
                    record.incorporation_status,
                )
            )

        if record.is_fallback:
            violations.extend(self._fallback_violations(record))

        return QualityResult(
            record_key=f"zip:{record.zip_code}",
            accepted=not violations,
            violations=violations,
        )

    def _fallback_violations(self, record: Jurisdiction) -> list[QualityViolation]:
        rules = self.rules
        violations: list[QualityViolation] = []
        if record.confidence < rules.fallback_min_confidence:
            violations.append(QualityViolation("confidence", "fallback: low-confidence", record.confidence))
        if record.incorporation_status == "unknown":
            violations.append(
                QualityViolation("incorporation_status", "fallback: unverified-status", record.incorporation_status)
            )
        known = self.tables.incorporated_places.get(record.state, frozenset())
        known = known | self.tables.census_designated_places.get(record.state, frozenset())
        if record.place_name not in known:
            violations.append(QualityViolation("place_name", "fallback: unverified-place", record.place_name))
        if _matches_any(record.place_name, rules.fallback_place_patterns):
            violations.append(QualityViolation("place_name", "forbidden-value: generic-place-name", record.place_name))
        return violations

    def _validate_representative(
        self,
        record: Representative,
        jurisdiction: Jurisdiction | None,
        now: datetime,
    ) -> QualityResult:
        rules = self.rules
        violations: list[QualityViolation] = []
        warnings: list[QualityViolation] = []
        contact = record.contact

        if _matches_any(record.name, rules.placeholder_name_patterns):
            violations.append(QualityViolation("name", "forbidden-value: placeholder-name", record.name))

        text_fields: list[tuple[str, str | None]] = [
            ("name", record.name),
            ("title", record.title),
            ("party", record.party),
            ("contact.phone", contact.phone),
            ("contact.email", contact.email),
            ("contact.website", contact.website),
            ("contact.office_address", contact.office_address),
        ]
        text_fields.extend((f"committees[{index}]", name) for index, name in enumerate(record.committees))
        for field_name, value in text_fields:
            if value and _find_token(value, rules.placeholder_tokens) is not None:
                violations.append(QualityViolation(field_name, "forbidden-value: placeholder-token", value))

        if contact.phone:
            digits = _phone_digits(contact.phone)
            if _is_placeholder_phone(digits) or digits in rules.placeholder_phone_numbers:
                violations.append(
                    QualityViolation("contact.phone", "forbidden-value: placeholder-phone", contact.phone)
                )
            elif not _PHONE_RE.match(contact.phone.strip()):
                violations.append(QualityViolation("contact.phone", "invalid-format: phone", contact.phone))

        if contact.email:
            match = _EMAIL_RE.match(contact.email.strip())
            if match is None:
                violations.append(QualityViolation("contact.email", "invalid-format: email", contact.email))
            elif _is_placeholder_domain(match.group(1), rules.placeholder_email_domains):
                violations.append(
                    QualityViolation("contact.email", "forbidden-value: placeholder-email-domain", contact.email)
                )

        violations.extend(_term_violations(record, now.date()))
        if record.term_end is not None:
            days_left = (record.term_end - now.date()).days
            if 0 <= days_left < rules.term_expiry_warning_days:
                warnings.append(QualityViolation("term_end", "freshness: term-expiring", record.term_end.isoformat()))

        stale = record.last_verified_at is None or now - record.last_verified_at > rules.stale_after(record.level)
        if stale:
            observed = record.last_verified_at.isoformat() if record.last_verified_at else None
            warnings.append(QualityViolation("last_verified_at", "freshness: stale", observed))
            if not (contact.phone or contact.email or contact.website):
                violations.append(QualityViolation("contact", "freshness: stale-without-contact", observed))

        if jurisdiction is not None and record.level not in jurisdiction.applicable_levels:
            violations.append(
                QualityViolation("level", f"inconsistent-level: {record.level}-not-applicable", record.level)
            )

        return QualityResult(
            record_key=f"{record.level}:{record.id}",
            accepted=not violations,
            violations=violations,
            warnings=warnings,
        )

    def _maybe_reload(self) -> None:
        if not self.hot_reload or not self.rules_path:
            return
        mtime = _mtime(self.rules_path)
        if mtime is None or mtime == self._rules_mtime:
            return
        try:
            rules = load_quality_rules(path=self.rules_path)
        except (OSError, ValueError) as exc:
            logger.warning("quality rules reload failed path=%s; keeping previous rules: %s", self.rules_path, exc)
            self._rules_mtime = mtime
            return
        self.rules = rules
        self._rules_mtime = mtime
        logger.info("quality rules reloaded path=%s", self.rules_path)


def _term_violations(record: Representative, today: date) -> list[QualityViolation]:
    violations: list[QualityViolation] = []
    if record.term_start and record.term_end and record.term_end < record.term_start:
        violations.append(
            QualityViolation(
                "term_end",
                "invalid-term: end-before-start",
                f"{record.term_start.isoformat()}..{record.term_end.isoformat()}",
            )
        )
    elif record.term_end and record.term_end < today:
        violations.append(QualityViolation("term_end", "invalid-term: expired", record.term_end.isoformat()))
    return violations


def _matches_any(value: str | None, patterns: tuple[Pattern[str], ...]) -> bool:
    if not value:
        return False
    normalized = " ".join(value.split())
    return any(pattern.search(normalized) for pattern in patterns)


def _find_token(value: str, tokens: tuple[str, ...]) -> str | None:
    lowered = value.casefold()
    for token in tokens:
        if re.search(rf"(?<![a-z0-9]){re.escape(token.casefold())}(?![a-z0-9])", lowered):
            return token
    return None


def _phone_digits(value: str) -> str:
    digits = re.sub(r"\D", "", value)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def _is_placeholder_phone(digits: str) -> bool:
    if len(digits) != 10:
        return False
    if len(set(digits)) == 1:
        return True
    if digits in {"1234567890", "0123456789", "9876543210"}:
        return True
    # 555-0100 through 555-0199 is reserved for fiction.
    return digits[3:6] == "555" and digits[6:8] == "01"


def _is_placeholder_domain(domain: str, denylist: frozenset[str]) -> bool:
    lowered = domain.casefold()
    return any(lowered == blocked or lowered.endswith(f".{blocked}") for blocked in denylist)


def _compile_all(patterns: tuple[str, ...]) -> tuple[Pattern[str], ...]:
    compiled: list[Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
    return tuple(compiled)


def _coerce_str_tuple(value: Any, key: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    return tuple(item.strip() for item in value if item.strip())


def _as_positive_int(value: Any, *, default: int, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a positive integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a positive integer") from exc
    if parsed <= 0:
        raise ValueError(f"{key} must be a positive integer")
    return parsed


def _as_confidence(value: Any, *, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("fallback_min_confidence must be a number") from exc
    if not 0.0 <= parsed <= 1.0:
        raise ValueError("fallback_min_confidence must be within [0, 1]")
    return parsed


def _mtime(path: str | None) -> float | None:
    if not path:
        return None
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None
