"""In-memory stand-ins for Firestore, Gemini and Places used across tests."""

from __future__ import annotations

import copy
import json
import threading
from typing import Any, Dict, List, Optional

from firebase_admin import firestore

from models import PlaceResult


def _apply(existing: Any, value: Any) -> Any:
    if isinstance(value, firestore.ArrayUnion):
        current = list(existing) if isinstance(existing, list) else []
        return current + [v for v in value.values if v not in current]
    if value is firestore.SERVER_TIMESTAMP:
        return "SERVER_TIMESTAMP"
    return copy.deepcopy(value)


def _merge(target: Dict[str, Any], data: Dict[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = _apply(target.get(key), value)


class FakeSnapshot:
    def __init__(self, data: Optional[Dict[str, Any]]) -> None:
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, db: "FakeFirestore", path: str) -> None:
        self.db = db
        self.path = path

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self.db.docs.get(self.path))

    def set(self, data: Dict[str, Any], merge: Any = False) -> None:
        self.db.writes.append(("set", self.path, merge))
        if isinstance(merge, list):
            # merge=[paths]: only the listed fields are written, each replaced whole
            doc = self.db.docs.setdefault(self.path, {})
            for path in merge:
                parts = path.parts
                value: Any = data
                for part in parts:
                    value = value[part]
                target = doc
                for part in parts[:-1]:
                    if not isinstance(target.get(part), dict):
                        target[part] = {}
                    target = target[part]
                target[parts[-1]] = _apply(target.get(parts[-1]), value)
        elif merge and self.path in self.db.docs:
            _merge(self.db.docs[self.path], data)
        else:
            fresh: Dict[str, Any] = {}
            _merge(fresh, data)
            self.db.docs[self.path] = fresh

    def update(self, data: Dict[str, Any]) -> None:
        if self.path not in self.db.docs:
            raise KeyError(f"no document at {self.path}")
        self.db.writes.append(("update", self.path, False))
        doc = self.db.docs[self.path]
        for key, value in data.items():
            doc[key] = _apply(doc.get(key), value)


class FakeCollection:
    def __init__(self, db: "FakeFirestore", name: str) -> None:
        self.db = db
        self.name = name

    def document(self, doc_id: str) -> FakeDocument:
        return FakeDocument(self.db, f"{self.name}/{doc_id}")


class FakeFirestore:
    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.writes: List[tuple] = []

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)


class FakeGenerator:
    def __init__(self, items: Any = None, text: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.items = items if items is not None else []
        self.text = text
        self.error = error
        self.prompts: List[str] = []
        self.models: List[Optional[str]] = []

    def generate_json(self, prompt: str, *, schema: Dict[str, Any], model: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        if self.error is not None:
            raise self.error
        if self.text is not None:
            return self.text
        return json.dumps(self.items)


class FakePlaces:
    """Answers lookups by the candidate name at the start of the query."""

    def __init__(self, places: Optional[Dict[str, PlaceResult]] = None) -> None:
        self.places = places or {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def search_place(self, query: str, center=None, radius_m=None) -> Optional[PlaceResult]:
        with self._lock:
            self.calls.append((query, center, radius_m))
        for name, place in self.places.items():
            if query.startswith(name):
                return place
        return None


class FakeAuthenticator:
    def __init__(self, tokens: Optional[Dict[str, str]] = None) -> None:
        self.tokens = tokens or {"good-token": "user-1"}

    def verify(self, token: str) -> Dict[str, Any]:
        if token not in self.tokens:
            raise ValueError("token rejected")
        return {"uid": self.tokens[token]}


def raw_item(name: str, **overrides: Any) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "name": name,
        "address": f"{name} Road 1, Taipei",
        "rating": 4.4,
        "priceLevel": "$$",
        "tags": ["noodles", "local", "late night", "extra"],
        "description": f"{name} is tasty",
        "recommendedDishes": ["beef noodles"],
        "lat": 25.034,
        "lng": 121.564,
    }
    item.update(overrides)
    return item


def place_for(name: str, idx: int, **overrides: Any) -> PlaceResult:
    fields: Dict[str, Any] = dict(
        name=name,
        formatted_address=f"No. {idx}, Xinyi Rd, Taipei",
        lat=25.0335 + idx * 0.001,
        lng=121.5645,
        place_id=f"place-{idx}",
        rating=4.1,
        user_rating_count=120,
        is_open=True,
    )
    fields.update(overrides)
    return PlaceResult(**fields)
