"""Data models for the gourmet finder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Language = Literal["zh-TW", "en", "ja"]

SUPPORTED_LANGUAGES: tuple[str, ...] = ("zh-TW", "en", "ja")
RADIUS_CHOICES: tuple[str, ...] = ("250m", "1km", "5km", "10km", "unlimited")


@dataclass(frozen=True)
class Restaurant:
    id: str
    name: str
    address: str
    rating: float
    price_level: str
    lat: float
    lng: float
    tags: List[str] = field(default_factory=list)
    description: str = ""
    recommended_dishes: List[str] = field(default_factory=list)
    distance: str = "ai-estimate"
    is_open: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "rating": self.rating,
            "priceLevel": self.price_level,
            "tags": list(self.tags),
            "description": self.description,
            "recommendedDishes": list(self.recommended_dishes),
            "distance": self.distance,
            "isOpen": self.is_open,
            "lat": self.lat,
            "lng": self.lng,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Restaurant":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            address=str(data.get("address") or ""),
            rating=float(data.get("rating") or 0.0),
            price_level=str(data.get("priceLevel") or "-"),
            lat=float(data.get("lat") or 0.0),
            lng=float(data.get("lng") or 0.0),
            tags=[str(t) for t in (data.get("tags") or [])],
            description=str(data.get("description") or ""),
            recommended_dishes=[str(d) for d in (data.get("recommendedDishes") or [])],
            distance=str(data.get("distance") or ""),
            is_open=data.get("isOpen") is not False,
        )


@dataclass(frozen=True)
class SearchParams:
    location: str
    keywords: str = ""
    radius: str = "1km"
    model: Optional[str] = None
    language: Language = "zh-TW"
    user_lat: Optional[float] = None
    user_lng: Optional[float] = None
    excluded_names: frozenset[str] = frozenset()

    def to_payload(self, limit: int, exclude_names: Optional[set[str]] = None) -> Dict[str, Any]:
        excluded = set(self.excluded_names) | set(exclude_names or ())
        payload: Dict[str, Any] = {
            "location": self.location,
            "keywords": self.keywords,
            "radius": self.radius,
            "limit": limit,
            "language": self.language,
            "excludeNames": sorted(excluded),
        }
        if self.model:
            payload["model"] = self.model
        if self.user_lat is not None and self.user_lng is not None:
            payload["userLat"] = self.user_lat
            payload["userLng"] = self.user_lng
        return payload


@dataclass
class PlaceResult:
    name: str
    formatted_address: Optional[str]
    lat: float
    lng: float
    place_id: str
    rating: Optional[float] = None
    user_rating_count: Optional[int] = None
    is_open: Optional[bool] = None


@dataclass
class RestaurantRating:
    restaurant_id: str
    name: str
    rating: int
    timestamp: int
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "restaurantId": self.restaurant_id,
            "name": self.name,
            "rating": self.rating,
            "timestamp": self.timestamp,
        }
        if self.comment:
            out["comment"] = self.comment
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestaurantRating":
        return cls(
            restaurant_id=str(data.get("restaurantId") or ""),
            name=str(data.get("name") or ""),
            rating=int(data.get("rating") or 0),
            timestamp=int(data.get("timestamp") or 0),
            comment=data.get("comment") or None,
        )


@dataclass
class PendingReview:
    id: str
    name: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "timestamp": self.timestamp}


@dataclass
class UserPreferences:
    language: Optional[str] = None
    default_model: Optional[str] = None
    blacklist: set[str] = field(default_factory=set)
    ratings: Dict[str, RestaurantRating] = field(default_factory=dict)
    pending_reviews: List[PendingReview] = field(default_factory=list)
    dev_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "blacklist": sorted(self.blacklist),
            "ratings": {rid: r.to_dict() for rid, r in self.ratings.items()},
            "pendingReviews": [p.to_dict() for p in self.pending_reviews],
            "devMode": self.dev_mode,
        }
        if self.language:
            out["language"] = self.language
        if self.default_model:
            out["defaultModel"] = self.default_model
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserPreferences":
        data = data or {}
        ratings: Dict[str, RestaurantRating] = {}
        for rid, raw in (data.get("ratings") or {}).items():
            if isinstance(raw, dict):
                ratings[str(rid)] = RestaurantRating.from_dict({"restaurantId": rid, **raw})
        pending = [
            PendingReview(id=str(p.get("id")), name=str(p.get("name") or ""), timestamp=int(p.get("timestamp") or 0))
            for p in (data.get("pendingReviews") or [])
            if isinstance(p, dict) and p.get("id")
        ]
        return cls(
            language=data.get("language") or None,
            default_model=data.get("defaultModel") or None,
            blacklist={str(x).strip() for x in (data.get("blacklist") or []) if str(x).strip()},
            ratings=ratings,
            pending_reviews=pending,
            dev_mode=bool(data.get("devMode", False)),
        )


@dataclass
class History:
    search_keywords: List[str] = field(default_factory=list)
    recommended_history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "searchKeywords": list(self.search_keywords),
            "recommendedHistory": list(self.recommended_history),
        }
