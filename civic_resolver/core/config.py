from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "civic-resolver"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    admin_api_key: str | None = None
    geo_provider_order: str = "geocodio,municipal_registry,static_table"
    geo_confidence_floor: float = 0.5
    geo_allow_low_confidence_fallback: bool = False
    geocodio_api_key: str | None = None
    geocodio_base_url: str = "https://api.geocod.io/v1.7"
    geocodio_timeout_seconds: float = 4.0
    geocodio_current_congress: int = 119
    municipal_registry_url: str | None = None
    municipal_registry_timeout_seconds: float = 3.0
    static_table_timeout_seconds: float = 0.5
    reference_tables_path: str | None = None
    boundary_table_path: str | None = None
    directory_snapshot_dir: str | None = None
    level_fetch_timeout_seconds: float = 2.0
    default_deadline_seconds: float = 10.0
    batch_concurrency: int = 8
    cache_ttl_seconds: int = 86400
    representative_cache_ttl_seconds: int = 3600
    cache_redis_url: str | None = None
    quality_rules_path: str | None = None
    quality_rules_json: str | None = None
    quality_rules_hot_reload: bool = False
    otel_enabled: bool = True
    otel_service_name: str = "civic-resolver"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CR_", extra="ignore")

    @property
    def geo_providers(self) -> list[str]:
        return [chunk.strip() for chunk in self.geo_provider_order.split(",") if chunk.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
