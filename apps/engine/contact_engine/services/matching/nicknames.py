from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

from contact_engine.core.config import get_settings

logger = logging.getLogger(__name__)


def _default_table_path() -> Path:
    return Path(__file__).resolve().parent / "nicknames.json"


def _resolve_table_path(path_value: str) -> Path:
    candidate = Path(path_value).expanduser()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    return candidate


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError:
        return None
    except ValueError:
        logger.exception("nickname_table_parse_failed", extra={"path": str(path)})
        return None
    if not isinstance(payload, dict):
        logger.warning("nickname_table_invalid_type", extra={"path": str(path)})
        return None
    return payload


@lru_cache(maxsize=1)
def load_nickname_table() -> dict[str, list[str]]:
    settings = get_settings()
    default_path = _default_table_path()
    payload = None
    if settings.nickname_table_path:
        configured_path = _resolve_table_path(settings.nickname_table_path)
        payload = _read_json(configured_path)
        if payload is None:
            logger.warning("nickname_table_fallback_default", extra={"path": str(configured_path)})
    if payload is None:
        payload = _read_json(default_path) or {}

    table: dict[str, list[str]] = {}
    for canonical, nicknames in payload.items():
        if not isinstance(nicknames, list):
            continue
        table[str(canonical).casefold()] = [str(nick).casefold() for nick in nicknames if str(nick).strip()]
    return table


def build_nickname_index(table: Mapping[str, list[str]]) -> dict[str, frozenset[str]]:
    """Map every known name to the canonical groups it belongs to.

    "bill" lands in the "william" group, "will" in both "william" and
    "wilson" groups if the table lists it under both.
    """
    groups: dict[str, set[str]] = {}
    for canonical, nicknames in table.items():
        for name in [canonical, *nicknames]:
            groups.setdefault(name, set()).add(canonical)
    return {name: frozenset(canonicals) for name, canonicals in groups.items()}


@lru_cache(maxsize=1)
def nickname_index() -> dict[str, frozenset[str]]:
    return build_nickname_index(load_nickname_table())


def clear_nickname_cache() -> None:
    load_nickname_table.cache_clear()
    nickname_index.cache_clear()


def nickname_equivalent(a: str, b: str, index: Mapping[str, frozenset[str]]) -> bool:
    if not a or not b:
        return False
    if a == b:
        return True
    return bool(index.get(a, frozenset()) & index.get(b, frozenset()))
