from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache

from contact_engine.core.config import Settings, get_settings, split_csv
from contact_engine.services.matching.nicknames import nickname_index


@dataclass(frozen=True)
class MatchPolicy:
    name_match_threshold: float = 0.75
    name_company_threshold: float = 0.5
    company_match_threshold: float = 0.5
    phone_name_threshold: float = 0.5
    first_name_only_score: float = 0.5
    name_typo_ratio: float = 85.0
    min_phone_digits: int = 7
    alias_domains: frozenset[str] = frozenset()
    dot_insensitive_domains: frozenset[str] = frozenset()
    nicknames: Mapping[str, frozenset[str]] = field(default_factory=nickname_index)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MatchPolicy:
        settings = settings or get_settings()
        return cls(
            name_match_threshold=settings.name_match_threshold,
            name_company_threshold=settings.name_company_threshold,
            company_match_threshold=settings.company_match_threshold,
            phone_name_threshold=settings.phone_name_threshold,
            first_name_only_score=settings.first_name_only_score,
            name_typo_ratio=settings.name_typo_ratio,
            min_phone_digits=settings.min_phone_digits,
            alias_domains=split_csv(settings.alias_domains),
            dot_insensitive_domains=split_csv(settings.dot_insensitive_domains),
        )


@lru_cache(maxsize=1)
def default_match_policy() -> MatchPolicy:
    return MatchPolicy.from_settings()
