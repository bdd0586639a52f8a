from __future__ import annotations

import asyncio
from typing import Iterable, Optional, Tuple

from loguru import logger

from models import UserPreferences
from services.preferences import build_context
from services.store import UserStore


def merge_exclusions(*sources: Iterable[str]) -> set[str]:
    out: set[str] = set()
    for source in sources:
        out.update(name.strip() for name in source if name and name.strip())
    return out


def recent_history(names: list[str], cap: int) -> list[str]:
    if cap <= 0:
        return []
    return names[-cap:]


def load_user_exclusions(store: UserStore, uid: str, cap: int = 50) -> Tuple[set[str], Optional[str]]:
    """Stored names a signed-in user should not see again, plus a personalization context."""
    history = store.get_history(uid)
    prefs = UserPreferences.from_dict(store.get_preferences(uid))
    names = merge_exclusions(recent_history(history.recommended_history, cap), prefs.blacklist)
    return names, build_context(prefs)


async def resolve_exclusions(
    store: Optional[UserStore],
    uid: Optional[str],
    caller_names: Iterable[str],
    cap: int = 50,
) -> Tuple[set[str], Optional[str]]:
    caller = merge_exclusions(caller_names)
    if not uid or store is None:
        return caller, None
    try:
        stored, context = await asyncio.to_thread(load_user_exclusions, store, uid, cap)
    except Exception as exc:
        logger.warning("history exclusion unavailable for uid={}: {}", uid, exc)
        return caller, None
    merged = merge_exclusions(caller, stored)
    logger.debug("exclusions uid={} caller={} stored={} merged={}", uid, len(caller), len(stored), len(merged))
    return merged, context
