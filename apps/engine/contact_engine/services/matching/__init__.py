from __future__ import annotations

from contact_engine.services.matching.nicknames import (
    clear_nickname_cache,
    load_nickname_table,
    nickname_equivalent,
    nickname_index,
)
from contact_engine.services.matching.policy import MatchPolicy, default_match_policy
from contact_engine.services.matching.resolver import most_recently_active, resolve
from contact_engine.services.matching.similarity import (
    company_fuzzy,
    email_alias_equivalent,
    email_exact,
    name_fuzzy,
    phone_exact,
)

__all__ = [
    "MatchPolicy",
    "default_match_policy",
    "resolve",
    "most_recently_active",
    "email_exact",
    "email_alias_equivalent",
    "phone_exact",
    "name_fuzzy",
    "company_fuzzy",
    "load_nickname_table",
    "nickname_index",
    "nickname_equivalent",
    "clear_nickname_cache",
]
