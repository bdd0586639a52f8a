from __future__ import annotations

import time
from typing import Optional

from models import PendingReview, Restaurant, RestaurantRating, UserPreferences

LIKED_MIN_RATING = 4
DISLIKED_MAX_RATING = 2


def _now_ms() -> int:
    return int(time.time() * 1000)


def add_to_blacklist(prefs: UserPreferences, name: str) -> bool:
    """Return True when the name was new."""
    cleaned = (name or "").strip()
    if not cleaned or cleaned in prefs.blacklist:
        return False
    prefs.blacklist.add(cleaned)
    return True


def remove_from_blacklist(prefs: UserPreferences, name: str) -> bool:
    cleaned = (name or "").strip()
    if cleaned not in prefs.blacklist:
        return False
    prefs.blacklist.discard(cleaned)
    return True


def mark_visited(prefs: UserPreferences, restaurant: Restaurant, timestamp: Optional[int] = None) -> bool:
    """Queue a check-in for later rating; already-pending ids are left alone."""
    if any(p.id == restaurant.id for p in prefs.pending_reviews):
        return False
    prefs.pending_reviews.append(
        PendingReview(id=restaurant.id, name=restaurant.name, timestamp=timestamp or _now_ms())
    )
    return True


def submit_rating(
    prefs: UserPreferences,
    restaurant_id: str,
    rating: int,
    *,
    name: Optional[str] = None,
    comment: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> RestaurantRating:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValueError(f"rating must be an integer between 1 and 5, got {rating!r}")

    if name is None:
        pending = next((p for p in prefs.pending_reviews if p.id == restaurant_id), None)
        previous = prefs.ratings.get(restaurant_id)
        name = pending.name if pending else (previous.name if previous else "")

    entry = RestaurantRating(
        restaurant_id=restaurant_id,
        name=name,
        rating=rating,
        timestamp=timestamp or _now_ms(),
        comment=(comment or "").strip() or None,
    )
    prefs.ratings[restaurant_id] = entry
    prefs.pending_reviews = [p for p in prefs.pending_reviews if p.id != restaurant_id]
    return entry


def build_context(prefs: UserPreferences, limit: int = 10) -> Optional[str]:
    """Summarize past ratings as free text for the search prompt."""
    ordered = sorted(prefs.ratings.values(), key=lambda r: r.timestamp, reverse=True)
    liked = [r.name for r in ordered if r.rating >= LIKED_MIN_RATING and r.name][:limit]
    disliked = [r.name for r in ordered if r.rating <= DISLIKED_MAX_RATING and r.name][:limit]
    lines: list[str] = []
    if liked:
        lines.append(f"- Enjoyed before (suggest similar places): {', '.join(liked)}")
    if disliked:
        lines.append(f"- Disliked before (avoid similar places): {', '.join(disliked)}")
    return "\n".join(lines) or None
