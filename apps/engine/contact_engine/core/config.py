from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_FREE_MAIL_DOMAINS = ",".join(
    [
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "ymail.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "mac.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "gmx.com",
        "mail.com",
    ]
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Contact Identity Engine"
    environment: str = "dev"
    log_level: str = "INFO"
    log_json: bool = True

    engine_pg_dsn: str = "sqlite:///./contact_engine.db"
    db_pool_size: int = Field(default=20, ge=1, le=200)
    db_max_overflow: int = Field(default=40, ge=0, le=400)
    db_pool_timeout_seconds: int = Field(default=60, ge=1, le=600)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86400)

    name_match_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    name_company_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    company_match_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    phone_name_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    first_name_only_score: float = Field(default=0.5, ge=0.0, le=1.0)
    # rapidfuzz ratio (0-100) at which a misspelled first or last name still counts.
    name_typo_ratio: float = Field(default=85.0, ge=0.0, le=100.0)
    min_phone_digits: int = Field(default=7, ge=1, le=15)

    # Comma separated; both lists are empty unless an operator opts a domain in.
    alias_domains: str = ""
    dot_insensitive_domains: str = ""
    free_mail_domains: str = DEFAULT_FREE_MAIL_DOMAINS
    nickname_table_path: str = ""

    # "field:platform" pairs, e.g. "title:close,company:close".
    authoritative_sources: str = ""
    known_platforms: str = "close,calendly,typeform"
    notes_separator: str = "\n\n"

    bulk_max_workers: int = Field(default=8, ge=1, le=64)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def split_csv(value: str | None) -> frozenset[str]:
    return frozenset(part.strip().lower() for part in (value or "").split(",") if part.strip())
