"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


SHARED_FIELD_ALIASES: dict[str, str] = {
    "format": "format",
    "price": "price",
    "acquired_date": "acquired_date",
    "acquireddate": "acquired_date",
    "purchase_date": "acquired_date",
    "purchasedate": "acquired_date",
    "title_status": "title_status",
    "titlestatus": "title_status",
}

DEFAULT_SHARED_FIELDS: tuple[str, ...] = (
    "format",
    "price",
    "acquired_date",
    "title_status",
)


def canonical_field_name(field: str) -> str | None:
    """Return the canonical shared field name for ``field`` or ``None``."""

    key = field.strip().replace("-", "_").lower()
    return SHARED_FIELD_ALIASES.get(key) or SHARED_FIELD_ALIASES.get(
        key.replace("_", "")
    )


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="FilmDex", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./filmdex.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    watch_next_name: str = Field(
        default="Watch Next", alias="WATCH_NEXT_NAME", min_length=1, max_length=255
    )
    propagation_concurrency: int = Field(
        default=4, alias="PROPAGATION_CONCURRENCY", ge=1, le=32
    )
    suggestion_limit: int = Field(
        default=10, alias="SUGGESTION_LIMIT", ge=1, le=50
    )
    shared_fields: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_SHARED_FIELDS, alias="SHARED_FIELDS"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("shared_fields", mode="before")
    @classmethod
    def _parse_shared_fields(cls, value: object) -> tuple[str, ...]:
        """Normalise shared field selections from environment values."""

        if value is None:
            return DEFAULT_SHARED_FIELDS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("SHARED_FIELDS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if not entry:
                continue
            canonical = canonical_field_name(entry)
            if canonical is None:
                raise ValueError("Unknown shared fields configured")
            if canonical not in cleaned:
                cleaned.append(canonical)
        if not cleaned:
            return DEFAULT_SHARED_FIELDS
        return tuple(cleaned)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
