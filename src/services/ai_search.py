from __future__ import annotations

import asyncio
import json
import math
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from config import Configuration
from models import PlaceResult, Restaurant, SearchParams
from services.gemini import RESTAURANT_LIST_SCHEMA, GeminiGenerator
from services.places import PlacesClient
from utils import format_distance, haversine_km, parse_lat_lng, parse_radius_meters

LANGUAGE_LABELS: Dict[str, str] = {
    "zh-TW": "Traditional Chinese (繁體中文)",
    "en": "English",
    "ja": "Japanese (日本語)",
}

PRICE_LEVELS: Dict[str, Dict[str, str]] = {
    "zh-TW": {
        "$": "$ (平價)",
        "$$": "$$ (稍貴)",
        "$$$": "$$$ (昂貴)",
        "$$$$": "$$$$ (天價)",
        "-": "-",
    },
    "en": {
        "$": "$ (Cheap)",
        "$$": "$$ (Moderate)",
        "$$$": "$$$ (Expensive)",
        "$$$$": "$$$$ (Very Expensive)",
        "-": "-",
    },
    "ja": {
        "$": "$ (安い)",
        "$$": "$$ (普通)",
        "$$$": "$$$ (高い)",
        "$$$$": "$$$$ (高級)",
        "-": "-",
    },
}

DEFAULT_RATING = 4.0
MAX_TAGS = 3


def default_keywords(language: str) -> str:
    return "good food, high rating" if language == "en" else "美食, 高評分"


def format_price_level(level: Optional[str], language: str) -> str:
    table = PRICE_LEVELS.get(language, PRICE_LEVELS["zh-TW"])
    return table.get((level or "").strip(), table["$"])


def build_prompt(
    params: SearchParams,
    limit: int,
    exclude_names: Iterable[str] = (),
    context: Optional[str] = None,
) -> str:
    keywords = params.keywords.strip() if params.keywords else ""
    final_keywords = keywords or default_keywords(params.language)
    target_language = LANGUAGE_LABELS.get(params.language, LANGUAGE_LABELS["zh-TW"])

    excluded = sorted({n.strip() for n in exclude_names if n and n.strip()})
    exclude_line = f"DO NOT include these restaurants: {', '.join(excluded)}." if excluded else ""

    if params.radius == "unlimited":
        radius_line = "Location: Prioritize nearby but allow wider search if needed."
    else:
        radius_line = f"Location: Must be strictly within {params.radius} of the center point."

    lines = [
        f'Task: Find exactly {limit} real, existing restaurants near "{params.location}" matching "{final_keywords}".',
    ]
    if exclude_line:
        lines.append(exclude_line)
    if context:
        lines.append("User Personal Preferences:")
        lines.append(context.strip())
    lines += [
        "",
        "Constraints:",
        f"1. Language: Output ONLY in {target_language}.",
        "2. Sort Order: Sort strictly by Recommendation Strength (Highest Rating + Best Keyword Match) DESCENDING.",
        f"3. {radius_line}",
        "4. Ensure coordinates (lat/lng) are accurate for the specific restaurant.",
    ]
    return "\n".join(lines)


def parse_raw_items(text: Optional[str]) -> List[Dict[str, Any]]:
    """Decode model output; anything but a JSON array of objects is 'no results'."""
    if not text or not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("model output is not valid JSON ({} chars)", len(text))
        return []
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def resolve_center(params: SearchParams) -> Optional[Tuple[float, float]]:
    if params.user_lat is not None and params.user_lng is not None:
        return (params.user_lat, params.user_lng)
    return parse_lat_lng(params.location)


def _to_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        out = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return list(dict.fromkeys(out))
    return []


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _clamp_rating(value: float) -> float:
    return round(max(1.0, min(5.0, value)), 1)


def _generate_id() -> str:
    return uuid.uuid4().hex[:9]


def merge_candidate(
    item: Dict[str, Any],
    place: Optional[PlaceResult],
    params: SearchParams,
    center: Optional[Tuple[float, float]],
    fallback: Tuple[float, float],
) -> Restaurant:
    """Reconcile one AI candidate with its (optional) verified place record."""
    ai_rating = _finite(item.get("rating"))
    ai_lat = _finite(item.get("lat"))
    ai_lng = _finite(item.get("lng"))
    ai_has_coords = ai_lat is not None and ai_lng is not None
    ai_open = item.get("isOpen") is not False

    name = str(item.get("name") or "").strip() or "Unknown"
    address = str(item.get("address") or "").strip() or params.location

    if place is not None:
        lat, lng = place.lat, place.lng
        rating = place.rating if place.rating is not None else (ai_rating if ai_rating is not None else DEFAULT_RATING)
        if center:
            distance = format_distance(haversine_km(center[0], center[1], lat, lng))
        else:
            distance = "verified"
        return Restaurant(
            id=place.place_id or _generate_id(),
            name=place.name or name,
            address=place.formatted_address or address,
            rating=_clamp_rating(rating),
            price_level=format_price_level(item.get("priceLevel"), params.language),
            lat=lat,
            lng=lng,
            tags=_to_str_list(item.get("tags"))[:MAX_TAGS],
            description=str(item.get("description") or ""),
            recommended_dishes=_to_str_list(item.get("recommendedDishes")),
            distance=distance,
            is_open=place.is_open if place.is_open is not None else ai_open,
        )

    if ai_has_coords:
        lat, lng = ai_lat, ai_lng
    else:
        lat, lng = fallback
    if center and ai_has_coords:
        distance = f"{format_distance(haversine_km(center[0], center[1], lat, lng))} (est)"
    else:
        distance = "ai-estimate"
    return Restaurant(
        id=_generate_id(),
        name=name,
        address=address,
        rating=_clamp_rating(ai_rating if ai_rating is not None else DEFAULT_RATING),
        price_level=format_price_level(item.get("priceLevel"), params.language),
        lat=lat,
        lng=lng,
        tags=_to_str_list(item.get("tags"))[:MAX_TAGS],
        description=str(item.get("description") or ""),
        recommended_dishes=_to_str_list(item.get("recommendedDishes")),
        distance=distance,
        is_open=ai_open,
    )


class RestaurantSearcher:
    """Prompt the model, verify every candidate concurrently, merge the results."""

    def __init__(
        self,
        cfg: Configuration,
        generator: Optional[GeminiGenerator] = None,
        places: Optional[PlacesClient] = None,
    ) -> None:
        self.cfg = cfg
        self.generator = generator or GeminiGenerator(cfg)
        self.places = places or PlacesClient(cfg)

    async def search(
        self,
        params: SearchParams,
        *,
        limit: int = 6,
        exclude_names: Iterable[str] = (),
        context: Optional[str] = None,
    ) -> List[Restaurant]:
        excluded = set(params.excluded_names) | {n for n in exclude_names if n}
        prompt = build_prompt(params, limit, excluded, context)
        raw_text = await asyncio.to_thread(
            self.generator.generate_json,
            prompt,
            schema=RESTAURANT_LIST_SCHEMA,
            model=params.model,
        )
        items = parse_raw_items(raw_text)
        if not items:
            logger.info("model returned no candidates for location={!r}", params.location)
            return []

        center = resolve_center(params)
        radius_m = parse_radius_meters(params.radius)

        async def verify(item: Dict[str, Any]) -> Optional[PlaceResult]:
            name = str(item.get("name") or "").strip()
            if not name:
                return None
            query = f"{name} {str(item.get('address') or '').strip() or params.location}"
            return await asyncio.to_thread(self.places.search_place, query, center, radius_m)

        places = await asyncio.gather(*(verify(item) for item in items))

        fallback = (self.cfg.fallback_lat, self.cfg.fallback_lng)
        results: List[Restaurant] = []
        seen_ids: set[str] = set()
        for item, place in zip(items, places):
            restaurant = merge_candidate(item, place, params, center, fallback)
            if restaurant.id in seen_ids:
                logger.debug("dropping duplicate candidate {} ({})", restaurant.name, restaurant.id)
                continue
            seen_ids.add(restaurant.id)
            results.append(restaurant)

        verified = sum(1 for p in places if p is not None)
        logger.info(
            "search location={!r} language={} candidates={} verified={} returned={}",
            params.location,
            params.language,
            len(items),
            verified,
            len(results),
        )
        return results
