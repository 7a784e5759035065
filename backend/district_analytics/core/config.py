# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Only the job entry point reads the module-level instance; computation
# components get their settings passed in explicitly.

import json
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


SNAPSHOT_BACKENDS = {"file", "sql"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Connection string for the transactional snapshot backend.
    # sqlite works for local runs; Postgres in production.
    DATABASE_URL: str = "sqlite:///./district_analytics.db"

    # Root directory for snapshots/, time-series/, raw-csv/ and analytics/.
    CACHE_DIR: str = "./cache"

    # Which SnapshotStore implementation the compute job wires up.
    SNAPSHOT_BACKEND: str = "file"

    # Year-over-year lookups never accept a snapshot further away than this
    # when no same-calendar-year candidate exists.
    YOY_MAX_DAY_DIFFERENCE: int = Field(default=180, gt=0)

    # How many program years the multi-year trend looks back.
    MULTI_YEAR_LOOKBACK: int = Field(default=5, gt=0)

    # Bounded re-reads before a corrupt snapshot file is surfaced.
    CORRUPTION_READ_RETRIES: int = Field(default=3, ge=1)

    # Per-unit analytics run in a thread pool of this size.
    COMPUTE_MAX_WORKERS: int = Field(default=4, ge=1)

    # Optional allow-list of unit ids for the compute job. Empty means all
    # units present in the snapshot.
    COMPUTE_UNIT_IDS: Annotated[List[str], NoDecode] = Field(default_factory=list)

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @field_validator("COMPUTE_UNIT_IDS", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            if value.strip().startswith("["):
                return safe_json_loads(value)
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @field_validator("SNAPSHOT_BACKEND")
    @classmethod
    def _validate_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SNAPSHOT_BACKENDS:
            raise ValueError(f"Unsupported SNAPSHOT_BACKEND: {value}")
        return normalized


settings = Settings()
