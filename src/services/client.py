from __future__ import annotations

import time
from typing import Any, Callable, Iterable, List, Optional

import requests
from loguru import logger

from models import History, Restaurant, SearchParams, UserPreferences
from services.cancellation import CancellationToken

ProgressCallback = Callable[[str], None]
TokenProvider = Callable[[], Optional[str]]


class ApiError(RuntimeError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Server Error: {status} {message}")
        self.status = status
        self.message = message


def _timestamp() -> str:
    return time.strftime("%H:%M:%S")


class GourmetClient:
    """HTTP wrapper around the gourmet finder API."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        token_provider: Optional[TokenProvider] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 90,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def signed_in(self) -> bool:
        return bool(self.token_provider and self.token_provider())

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self.session.request(
            method, f"{self.base}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
        )
        if not resp.ok:
            try:
                message = (resp.json() or {}).get("error") or resp.reason
            except ValueError:
                message = resp.text[:300] or resp.reason
            raise ApiError(resp.status_code, str(message))
        return resp.json()

    def search(
        self,
        params: SearchParams,
        limit: int = 6,
        exclude_names: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Restaurant]:
        emit = (token.guard(on_progress) if token else on_progress) or (lambda _chunk: None)
        if token:
            token.raise_if_cancelled()

        emit(f"[{_timestamp()}] 🚀 Sending Request to Server...\n")
        payload = params.to_payload(limit, set(exclude_names or ()))
        try:
            data = self._request("POST", "/ai/search", json=payload)
        except Exception as exc:
            emit(f"\n❌ ERROR: {exc}\n")
            raise

        if token:
            token.raise_if_cancelled()
        emit(f"[{_timestamp()}] ⏳ Processing Server Response...\n")
        items = data if isinstance(data, list) else []
        results = [Restaurant.from_dict(item) for item in items if isinstance(item, dict)]
        emit(f"[SUCCESS] Received {len(results)} items.\n")
        return results

    def get_preferences(self) -> UserPreferences:
        data = self._request("GET", "/user/preferences")
        return UserPreferences.from_dict(data if isinstance(data, dict) else {})

    def save_preferences(self, partial: dict) -> dict:
        return self._request("POST", "/user/preferences", json=partial)

    def sync_user(self, email: Optional[str], display_name: Optional[str], photo_url: Optional[str]) -> dict:
        body = {"email": email, "displayName": display_name, "photoURL": photo_url}
        return self._request("POST", "/user/sync", json=body)

    def add_history(self, keywords: Iterable[str] | str, restaurant_names: Iterable[str]) -> dict:
        keyword_list = [keywords] if isinstance(keywords, str) else list(keywords)
        body = {
            "keywords": [k for k in keyword_list if k],
            "restaurantNames": list(restaurant_names),
        }
        logger.debug("history += {} keywords, {} names", len(body["keywords"]), len(body["restaurantNames"]))
        return self._request("POST", "/user/history", json=body)

    def get_history(self) -> History:
        data = self._request("GET", "/user/history") or {}
        return History(
            search_keywords=list(data.get("searchKeywords") or []),
            recommended_history=list(data.get("recommendedHistory") or []),
        )
