from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import requests
from loguru import logger

from config import Configuration
from models import PlaceResult

FIELD_MASK = ",".join(
    [
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.rating",
        "places.userRatingCount",
        "places.id",
        "places.currentOpeningHours",
    ]
)


class PlacesError(RuntimeError):
    pass


@dataclass
class _RetryPolicy:
    retries: int = 2
    base_delay: float = 0.3


class PlacesClient:
    """Best-match lookups against the Places text search endpoint.

    Every failure mode collapses into ``None``: verification is optional and
    must never abort a search.
    """

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.places_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.policy = _RetryPolicy(retries=max(cfg.places_retries, 0))
        self._cache_ttl = 60 * 30  # 30 minutes
        self._cache_max = 256
        self._cache: OrderedDict[str, Tuple[float, PlaceResult]] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return bool(self.cfg.places_api_key)

    def _cache_get(self, key: str) -> Optional[PlaceResult]:
        entry = self._cache.get(key)
        if not entry:
            return None
        ts, value = entry
        if time.time() - ts > self._cache_ttl:
            self._cache.pop(key, None)
            return None
        self._cache.move_to_end(key)
        return value

    def _cache_set(self, key: str, value: PlaceResult) -> None:
        if len(self._cache) >= self._cache_max:
            self._cache.popitem(last=False)
        self._cache[key] = (time.time(), value)

    def _post(self, path: str, body: dict) -> dict:
        url = f"{self.base}{path}"
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.cfg.places_api_key or "",
            "X-Goog-FieldMask": FIELD_MASK,
        }
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.post(url, json=body, headers=headers, timeout=self.cfg.places_timeout)
            except requests.RequestException as exc:
                if attempt <= self.policy.retries:
                    time.sleep(self.policy.base_delay * attempt)
                    continue
                raise PlacesError(f"request error: {exc}")

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= self.policy.retries:
                    time.sleep(self.policy.base_delay * attempt)
                    continue
                raise PlacesError(f"upstream {resp.status_code}: {resp.text[:300]}")

            if not resp.ok:
                raise PlacesError(f"upstream {resp.status_code}: {resp.text[:300]}")

            try:
                return resp.json()
            except ValueError:
                raise PlacesError("invalid json response")

    def search_place(
        self,
        query: str,
        center: Optional[Tuple[float, float]] = None,
        radius_m: Optional[float] = None,
    ) -> Optional[PlaceResult]:
        """Return the single best match for ``query`` or None.

        ``center`` is (lat, lng) and only biases the ranking; it is not a filter.
        """
        if not self.enabled:
            return None

        key = f"{query.strip().lower()}|{center}|{radius_m}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        body: dict[str, Any] = {"textQuery": query, "maxResultCount": 1}
        if center:
            body["locationBias"] = {
                "circle": {
                    "center": {"latitude": center[0], "longitude": center[1]},
                    "radius": float(radius_m or 1000.0),
                }
            }

        try:
            payload = self._post("/v1/places:searchText", body)
            result = _parse_place(payload, query)
        except PlacesError as exc:
            logger.warning("places lookup failed for {!r}: {}", query, exc)
            return None
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("places payload unreadable for {!r}: {}", query, exc)
            return None

        if result is not None:
            self._cache_set(key, result)
        return result


def _parse_place(payload: dict, query: str) -> Optional[PlaceResult]:
    places = payload.get("places") or []
    if not places:
        return None
    place = places[0]
    location = place["location"]
    rating = place.get("rating")
    count = place.get("userRatingCount")
    opening = place.get("currentOpeningHours") or {}
    open_now = opening.get("openNow")
    return PlaceResult(
        name=(place.get("displayName") or {}).get("text") or query,
        formatted_address=place.get("formattedAddress") or None,
        lat=float(location["latitude"]),
        lng=float(location["longitude"]),
        place_id=str(place.get("id") or ""),
        rating=(float(rating) if isinstance(rating, (int, float)) else None),
        user_rating_count=(int(count) if isinstance(count, (int, float)) else None),
        is_open=(bool(open_now) if isinstance(open_now, bool) else None),
    )
