from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from loguru import logger

from models import Restaurant, SearchParams
from services.cancellation import CancellationToken, SearchCancelled
from services.client import GourmetClient

NO_RESULTS_MESSAGES: Dict[str, str] = {
    "zh-TW": "找不到符合條件的餐廳",
    "en": "No restaurants found.",
    "ja": "条件に合うレストランが見つかりませんでした。",
}

CONNECTION_ERROR_MESSAGES: Dict[str, str] = {
    "zh-TW": "連線發生錯誤，請稍後再試。",
    "en": "Connection error.",
    "ja": "接続エラーが発生しました。",
}


class NoResultsError(RuntimeError):
    pass


class Phase(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    FINISHING = "finishing"
    ERROR = "error"
    RESULT = "result"


@dataclass
class ViewState:
    view: str = "input"
    phase: Phase = Phase.IDLE
    loading: bool = False
    loading_error: Optional[str] = None
    params: Optional[SearchParams] = None
    all_restaurants: List[Restaurant] = field(default_factory=list)
    shown_ids: Set[str] = field(default_factory=set)
    displayed: List[Restaurant] = field(default_factory=list)
    pending_results: List[Restaurant] = field(default_factory=list)
    is_background_fetching: bool = False
    dev_mode: bool = False
    stream_output: str = ""

    @property
    def unshown(self) -> List[Restaurant]:
        return [r for r in self.all_restaurants if r.id not in self.shown_ids]

    @property
    def exhausted(self) -> bool:
        return bool(self.all_restaurants) and not self.is_background_fetching and not self.unshown


def describe_search_error(error: BaseException | str, language: str = "zh-TW") -> str:
    """Map an upstream failure to the message shown in the loading overlay."""
    if isinstance(error, NoResultsError):
        return str(error)
    message = str(error)
    if "503" in message or "Overloaded" in message:
        return "Model Overloaded (503)"
    if "429" in message:
        return "Rate Limit Exceeded (429)"
    if "API Key" in message:
        return "Invalid API Key"
    return CONNECTION_ERROR_MESSAGES.get(language, CONNECTION_ERROR_MESSAGES["en"])


class SearchController:
    """Two-phase search flow behind the input and result views.

    Phase 1 blocks the overlay for the first page. Phase 2 prefetches more
    candidates in the background so `next_page` can reveal them instantly.
    """

    def __init__(
        self,
        client: GourmetClient,
        *,
        finish_delay: float = 0.5,
        initial_limit: int = 6,
        supplement_limit: int = 9,
    ) -> None:
        self.client = client
        self.finish_delay = finish_delay
        self.initial_limit = initial_limit
        self.supplement_limit = supplement_limit
        self.state = ViewState()
        self._token: Optional[CancellationToken] = None
        self._background: Optional[asyncio.Task] = None
        self._side_tasks: Set[asyncio.Task] = set()

    def _invalidate(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if self._background is not None and not self._background.done():
            self._background.cancel()
        self._background = None

    def _is_current(self, token: CancellationToken) -> bool:
        return self._token is token and not token.cancelled

    def _progress_sink(self, token: CancellationToken):
        loop = asyncio.get_running_loop()

        def append(chunk: str) -> None:
            if self._is_current(token):
                self.state.stream_output += chunk

        def sink(chunk: str) -> None:
            # called from the worker thread running the request
            loop.call_soon_threadsafe(append, chunk)

        return sink

    async def search(self, params: SearchParams, dev_mode: bool = False) -> None:
        self._invalidate()
        token = CancellationToken()
        self._token = token

        s = self.state
        s.phase = Phase.SEARCHING
        s.loading = True
        s.loading_error = None
        s.params = params
        s.dev_mode = dev_mode
        s.stream_output = ""
        s.pending_results = []
        s.is_background_fetching = False

        on_progress = self._progress_sink(token) if dev_mode else None
        try:
            results = await asyncio.to_thread(
                self.client.search, params, self.initial_limit, None, on_progress, token
            )
            token.raise_if_cancelled()
            if not results:
                raise NoResultsError(NO_RESULTS_MESSAGES.get(params.language, NO_RESULTS_MESSAGES["en"]))
        except SearchCancelled:
            return
        except Exception as exc:
            if not self._is_current(token):
                return
            logger.warning("search failed: {}", exc)
            s.phase = Phase.ERROR
            s.loading_error = describe_search_error(exc, params.language)
            return

        if not self._is_current(token):
            return

        s.phase = Phase.FINISHING
        s.pending_results = list(results)
        s.all_restaurants = list(results)
        s.shown_ids = set()
        s.displayed = []
        s.is_background_fetching = True
        self._background = asyncio.create_task(self._fetch_more(params, results, token))

        await asyncio.sleep(self.finish_delay)
        if not self._is_current(token):
            return

        s.displayed = list(results)
        s.shown_ids = {r.id for r in results}
        s.pending_results = []
        s.loading = False
        s.view = "result"
        s.phase = Phase.RESULT
        self._record_history(params, results)

    async def _fetch_more(self, params: SearchParams, first: List[Restaurant], token: CancellationToken) -> None:
        exclude = {r.name for r in first} | set(params.excluded_names)
        try:
            more = await asyncio.to_thread(
                self.client.search, params, self.supplement_limit, exclude, None, token
            )
        except SearchCancelled:
            return
        except Exception as exc:
            logger.info("background fetch failed: {}", exc)
            if self._is_current(token):
                self.state.is_background_fetching = False
            return

        if not self._is_current(token):
            return
        pool = self.state.all_restaurants
        known_ids = {r.id for r in pool}
        known_names = {r.name for r in pool}
        fresh = [r for r in more if r.id not in known_ids and r.name not in known_names]
        pool.extend(fresh)
        self.state.is_background_fetching = False
        logger.debug("background fetch added {} of {}", len(fresh), len(more))

    async def wait_for_background(self) -> None:
        if self._background is not None:
            try:
                await self._background
            except asyncio.CancelledError:
                pass

    def _record_history(self, params: SearchParams, shown: List[Restaurant]) -> None:
        if not self.client.signed_in:
            return
        names = [r.name for r in shown]
        task = asyncio.create_task(asyncio.to_thread(self.client.add_history, params.keywords, names))
        self._side_tasks.add(task)
        task.add_done_callback(self._history_done)

    def _history_done(self, task: asyncio.Task) -> None:
        self._side_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("history update failed: {}", task.exception())

    def cancel(self) -> None:
        """Abort the in-flight search; no continuation of it touches state afterwards."""
        self._invalidate()
        s = self.state
        s.loading = False
        s.loading_error = None
        s.pending_results = []
        s.is_background_fetching = False
        if s.view == "result":
            s.phase = Phase.RESULT
        else:
            s.phase = Phase.IDLE
            s.all_restaurants = []

    def close_error(self) -> None:
        s = self.state
        s.loading = False
        s.loading_error = None
        s.phase = Phase.RESULT if s.view == "result" else Phase.IDLE

    def next_page(self) -> List[Restaurant]:
        """Append everything downloaded but not yet displayed; returns the new items."""
        batch = self.state.unshown
        if not batch:
            return []
        self.state.displayed = self.state.displayed + batch
        self.state.shown_ids.update(r.id for r in batch)
        return batch

    def back(self) -> None:
        self._invalidate()
        self.state = ViewState(dev_mode=self.state.dev_mode)
