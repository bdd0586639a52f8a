from __future__ import annotations

import threading
from typing import Callable, Optional


class SearchCancelled(Exception):
    pass


class CancellationToken:
    """Cooperative cancellation shared by one search's whole call chain.

    Blocking work runs in worker threads, so the flag is a threading.Event.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelled()

    def guard(self, callback: Optional[Callable[[str], None]]) -> Optional[Callable[[str], None]]:
        """Wrap a progress callback so it goes quiet once cancelled."""
        if callback is None:
            return None

        def guarded(chunk: str) -> None:
            if not self._event.is_set():
                callback(chunk)

        return guarded
