from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(
        default=Path("data/maritime-monitor.db"), validation_alias="DB_PATH"
    )
    reference_data_path: Path = Field(
        default=Path(__file__).resolve().parents[1] / "geo" / "data" / "reference.yaml",
        validation_alias="REFERENCE_DATA_PATH",
    )

    user_agent: str = Field(
        default="maritime-monitor/0.1", validation_alias="USER_AGENT"
    )
    http_proxy_url: str | None = Field(default=None, validation_alias="HTTP_PROXY_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    recaap_url: str = Field(
        default="https://portal.recaap.org/OpenMap/MapSearchIncidentServlet/",
        validation_alias="SOURCE_URL_RECAAP",
    )
    ukmto_url: str = Field(
        default="https://www.ukmto.org/api/incidents",
        validation_alias="SOURCE_URL_UKMTO",
    )
    mdat_url: str = Field(
        default="https://gog-mdat.org/api/occurrences/getPoints",
        validation_alias="SOURCE_URL_MDAT",
    )
    icc_url: str = Field(
        default="https://www.icc-ccs.org/map/markers.json",
        validation_alias="SOURCE_URL_ICC",
    )
    cwd_url: str = Field(
        default="https://www.clearwater-dynamics.com/maritime-incidents",
        validation_alias="SOURCE_URL_CWD",
    )

    http_timeout_seconds: float = Field(
        default=8.0, validation_alias="HTTP_TIMEOUT_SECONDS"
    )
    fetch_max_retries: int = Field(default=2, validation_alias="FETCH_MAX_RETRIES")
    fetch_retry_delay_seconds: float = Field(
        default=2.0, validation_alias="FETCH_RETRY_DELAY_SECONDS"
    )

    cache_ttl_seconds: int = Field(default=3600, validation_alias="CACHE_TTL_SECONDS")
    reference_ttl_seconds: int = Field(
        default=86400, validation_alias="REFERENCE_TTL_SECONDS"
    )
    run_log_capacity: int = Field(default=100, validation_alias="RUN_LOG_CAPACITY")

    collection_interval_minutes: int = Field(
        default=30, validation_alias="COLLECTION_INTERVAL_MINUTES"
    )
    invocation_budget_seconds: float = Field(
        default=60.0, validation_alias="INVOCATION_BUDGET_SECONDS"
    )
    merge_attempts: int = Field(default=3, validation_alias="MERGE_ATTEMPTS")
    strict_sources: str = Field(default="", validation_alias="STRICT_SOURCES")

    process_batch_size: int = Field(default=10, validation_alias="PROCESS_BATCH_SIZE")
    jobs_retention_days: int = Field(default=7, validation_alias="JOBS_RETENTION_DAYS")

    def strict_source_names(self) -> set[str]:
        return {
            part.strip().casefold()
            for part in self.strict_sources.split(",")
            if part.strip()
        }
