"""Client-side polling for a transaction's AI category suggestion.

Suggestions are generated after the transaction is created, so a client that
wants to show one has to ask again until it appears or a deadline passes.

Lifecycle::

    IDLE -> POLLING -> FOUND | TIMED_OUT | CANCELLED

Exactly one terminal state is reached and its callback fires at most once.
Fetches for a poller never overlap: each tick waits for the previous fetch to
return. Cancelling (or timing out) cancels the in-flight fetch's
``CancelToken``; ``cancel()`` then joins the polling thread, so no further
fetch can start once it returns.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .api_client import LedgerlyClient, TransactionViewCache

DEFAULT_INTERVAL_SECONDS = 2.0
DEFAULT_TIMEOUT_SECONDS = 30.0
JOIN_TIMEOUT_SECONDS = 5.0

Fetch = Callable[[str, "CancelToken"], Mapping[str, Any] | None]


class FetchCancelled(Exception):
    """Raised by a fetch whose token was cancelled before it could complete."""


class CancelToken:
    """One-shot cancellation signal shared between a poller and its fetch.

    ``deadline`` is an optional ``time.monotonic()`` value after which the
    fetch's result is no longer wanted; fetchers cap their timeouts with it.
    """

    def __init__(self, deadline: float | None = None):
        self.deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Register a callback to run on cancel; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logging.warning("Cancel callback failed: %s", e)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelled()


class PollState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    FOUND = "found"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def has_suggestion(transaction: Mapping[str, Any] | None) -> bool:
    return bool(transaction and transaction.get("suggested_category_name"))


class SuggestionPoller:
    """Polls one transaction until it carries a suggested category."""

    def __init__(
        self,
        fetch: Fetch,
        transaction_id: str,
        on_found: Callable[[Mapping[str, Any]], Any],
        on_timeout: Callable[[], Any],
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        on_error: Callable[[Exception], Any] | None = None,
    ):
        if interval <= 0 or timeout <= 0:
            raise ValueError("interval and timeout must be positive")

        self.fetch = fetch
        self.transaction_id = transaction_id
        self.on_found = on_found
        self.on_timeout = on_timeout
        self.on_error = on_error
        self.interval = interval
        self.timeout = timeout

        self._state = PollState.IDLE
        self._lock = threading.Lock()  # Guards _state and _inflight
        self._stop = threading.Event()
        self._done = threading.Event()
        self._inflight: CancelToken | None = None
        self._deadline: threading.Timer | None = None
        self._deadline_at: float | None = None
        self._thread: threading.Thread | None = None
        self.fetch_count = 0

    @property
    def state(self) -> PollState:
        with self._lock:
            return self._state

    def start(self) -> None:
        """Begin polling; the first fetch is issued immediately."""
        with self._lock:
            if self._state != PollState.IDLE:
                return
            self._state = PollState.POLLING
            self._deadline_at = time.monotonic() + self.timeout

            self._deadline = threading.Timer(self.timeout, self._on_deadline)
            self._deadline.daemon = True
            self._thread = threading.Thread(
                target=self._run, name=f"suggestion-poller-{self.transaction_id}", daemon=True
            )

        self._deadline.start()
        self._thread.start()

    def cancel(self) -> None:
        """Stop polling and abort any in-flight fetch. No callback fires afterwards."""
        with self._lock:
            if self._state == PollState.IDLE:
                self._state = PollState.CANCELLED
                self._stop.set()
                self._done.set()
                return

        if not self._finish(PollState.CANCELLED):
            return
        logging.debug("Suggestion polling cancelled for transaction %s", self.transaction_id)
        self._done.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logging.warning(
                    "Poller thread for transaction %s still running %.1fs after cancel",
                    self.transaction_id,
                    JOIN_TIMEOUT_SECONDS,
                )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a terminal state is reached and its callback has run."""
        return self._done.wait(timeout)

    def _finish(self, state: PollState) -> bool:
        """Move from POLLING to a terminal state. Only the first caller wins."""
        with self._lock:
            if self._state != PollState.POLLING:
                return False
            self._state = state
            inflight, self._inflight = self._inflight, None
            deadline = self._deadline

        self._stop.set()
        if deadline is not None:
            deadline.cancel()
        if inflight is not None and state != PollState.FOUND:
            inflight.cancel()
        return True

    def _on_deadline(self) -> None:
        if not self._finish(PollState.TIMED_OUT):
            return

        logging.info(
            "No AI suggestion for transaction %s after %.1fs, giving up", self.transaction_id, self.timeout
        )
        try:
            self.on_timeout()
        finally:
            self._done.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            token = CancelToken(deadline=self._deadline_at)
            with self._lock:
                if self._state != PollState.POLLING:
                    return
                self._inflight = token
                self.fetch_count += 1

            result = None
            try:
                result = self.fetch(self.transaction_id, token)
            except Exception as e:
                if token.cancelled or self._stop.is_set():
                    return
                logging.warning("Suggestion poll for transaction %s failed: %s", self.transaction_id, e)
                if self.on_error is not None:
                    self.on_error(e)
            finally:
                with self._lock:
                    if self._inflight is token:
                        self._inflight = None

            # Latch: the deadline or a cancel may have landed while the fetch was in flight
            if has_suggestion(result) and self._finish(PollState.FOUND):
                try:
                    self.on_found(result)
                finally:
                    self._done.set()
                return

            if self._stop.wait(self.interval):
                return


def poll_for_suggestion(
    client: LedgerlyClient,
    transaction_id: str,
    *,
    cache: TransactionViewCache | None = None,
    on_found: Callable[[Mapping[str, Any]], Any] | None = None,
    on_timeout: Callable[[], Any] | None = None,
    interval: float = DEFAULT_INTERVAL_SECONDS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> SuggestionPoller:
    """Start polling a freshly created transaction and return the running poller.

    When a suggestion appears, the cached view model for the transaction is
    updated in place before ``on_found`` runs.
    """

    def handle_found(transaction: Mapping[str, Any]) -> None:
        if cache is not None:
            cache.apply_suggestion(transaction_id, transaction)
        if on_found is not None:
            on_found(transaction)

    def handle_timeout() -> None:
        if on_timeout is not None:
            on_timeout()

    poller = SuggestionPoller(
        client.get_transaction,
        transaction_id,
        handle_found,
        handle_timeout,
        interval=interval,
        timeout=timeout,
    )
    poller.start()
    return poller
