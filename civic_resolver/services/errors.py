from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from civic_resolver.services.models import QualityViolation


class ResolutionError(Exception):
    """Base engine error."""


class ProviderError(ResolutionError):
    """Raised by a geo provider when its upstream answers with an error."""

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider_name}: {message}")


class ProviderTimeout(ProviderError):
    """Raised when a provider does not answer within its own timeout."""

    def __init__(self, provider_name: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(provider_name, f"timed out after {timeout_seconds:.2f}s")


class JurisdictionUnresolved(ResolutionError):
    """Raised when no usable jurisdiction can be produced for a ZIP code."""

    def __init__(self, zip_code: str, reason: str, violations: list[QualityViolation] | None = None) -> None:
        self.zip_code = zip_code
        self.reason = reason
        self.violations = list(violations or [])
        super().__init__(f"jurisdiction unresolved for zip={zip_code}: {reason}")


class InvalidZipCode(JurisdictionUnresolved):
    """Raised when the input is not a plausible 5-digit U.S. ZIP code."""


class QualityRejected(ResolutionError):
    """Raised when a record fails the data quality gate."""

    def __init__(self, record_key: str, violations: list[QualityViolation]) -> None:
        self.record_key = record_key
        self.violations = list(violations)
        rules = ", ".join(sorted({violation.rule for violation in violations}))
        super().__init__(f"record {record_key} rejected: {rules}")


class CacheCorrupt(ResolutionError):
    """Raised when a cached value cannot be decoded; callers treat it as a miss."""

    def __init__(self, key: str, detail: str) -> None:
        self.key = key
        super().__init__(f"cache entry {key} is corrupt: {detail}")
