from __future__ import annotations

import re

from rapidfuzz import fuzz

from contact_engine.services.matching.nicknames import nickname_equivalent
from contact_engine.services.matching.policy import MatchPolicy, default_match_policy

_NAME_TOKEN_RE = re.compile(r"[\w'-]+")
_COMPANY_PUNCT_RE = re.compile(r"[^\w\s&]+")
_WHITESPACE_RE = re.compile(r"\s+")

# Tiers: differing middle names, nickname first, initial first, a misspelled
# first or last name, then shared surname only. Token overlap stays under 0.5.
_SCORE_MIDDLE_DIFFERS = 0.95
_SCORE_NICKNAME = 0.9
_SCORE_INITIAL = 0.8
_SCORE_TYPO = 0.7
_SCORE_SURNAME_ONLY = 0.3
_OVERLAP_CAP = 0.45


def email_exact(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a == b


def alias_canonical(email: str | None, policy: MatchPolicy | None = None) -> str | None:
    """Canonical form of an address on an allow-listed alias domain, else None."""
    policy = policy or default_match_policy()
    if not email or "@" not in email:
        return None
    local, _, domain = email.rpartition("@")
    if not local or not domain:
        return None
    allowed = False
    if domain in policy.alias_domains:
        local = local.split("+", 1)[0]
        allowed = True
    if domain in policy.dot_insensitive_domains:
        local = local.replace(".", "")
        allowed = True
    if not allowed or not local:
        return None
    return f"{local}@{domain}"


def email_alias_equivalent(a: str | None, b: str | None, policy: MatchPolicy | None = None) -> bool:
    canonical_a = alias_canonical(a, policy)
    if canonical_a is None:
        return False
    return canonical_a == alias_canonical(b, policy)


def phone_exact(a: str | None, b: str | None, policy: MatchPolicy | None = None) -> bool:
    policy = policy or default_match_policy()
    if not a or not b:
        return False
    return a == b and len(a) >= policy.min_phone_digits


def name_tokens(value: str | None) -> list[str]:
    if not value:
        return []
    return [token.strip("'-") for token in _NAME_TOKEN_RE.findall(value.casefold()) if token.strip("'-")]


def _is_initial_of(short: str, full: str) -> bool:
    return len(short) == 1 and len(full) > 1 and full.startswith(short)


def _token_overlap(a: list[str], b: list[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return _OVERLAP_CAP * len(set_a & set_b) / len(union)


def _typo_match(a: str, b: str, policy: MatchPolicy) -> bool:
    return fuzz.ratio(a, b) >= policy.name_typo_ratio


def name_fuzzy(a: str | None, b: str | None, policy: MatchPolicy | None = None) -> float:
    policy = policy or default_match_policy()
    tokens_a = name_tokens(a)
    tokens_b = name_tokens(b)
    if not tokens_a or not tokens_b:
        return 0.0
    if tokens_a == tokens_b:
        return 1.0

    if len(tokens_a) == 1 or len(tokens_b) == 1:
        single, full = (tokens_a, tokens_b) if len(tokens_a) == 1 else (tokens_b, tokens_a)
        token = single[0]
        if nickname_equivalent(token, full[0], policy.nicknames):
            return policy.first_name_only_score
        if len(full) > 1 and token == full[-1]:
            return policy.first_name_only_score
        return 0.0

    first_a, last_a = tokens_a[0], tokens_a[-1]
    first_b, last_b = tokens_b[0], tokens_b[-1]
    if last_a != last_b:
        first_agrees = first_a == first_b or nickname_equivalent(first_a, first_b, policy.nicknames)
        if first_agrees and _typo_match(last_a, last_b, policy):
            return _SCORE_TYPO
        return _token_overlap(tokens_a, tokens_b)
    if first_a == first_b:
        return _SCORE_MIDDLE_DIFFERS
    if nickname_equivalent(first_a, first_b, policy.nicknames):
        return _SCORE_NICKNAME
    if _is_initial_of(first_a, first_b) or _is_initial_of(first_b, first_a):
        return _SCORE_INITIAL
    if _typo_match(first_a, first_b, policy):
        return _SCORE_TYPO
    return _SCORE_SURNAME_ONLY


def _company_key(value: str | None) -> str:
    if not value:
        return ""
    cleaned = _COMPANY_PUNCT_RE.sub(" ", value.casefold())
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def company_fuzzy(a: str | None, b: str | None) -> float:
    key_a = _company_key(a)
    key_b = _company_key(b)
    if not key_a or not key_b:
        return 0.0
    if key_a == key_b:
        return 1.0
    if key_a in key_b or key_b in key_a:
        return 0.8
    return 0.0
