"""HTTP client for the Ledgerly REST API and a small view-model cache."""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import requests

from .poller import CancelToken, FetchCancelled


MIN_TIMEOUT_SECONDS = 0.05


class LedgerlyClient:
    """Thin requests-based client scoped to one user.

    Calls that carry a ``CancelToken`` run the request on a helper thread and
    wait for either the response or the cancel. A cancel raises
    ``FetchCancelled`` immediately and closes the call's session; the abandoned
    request has its connect and read timeouts capped at the time left before
    the token's deadline.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 10.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self._session_factory = session_factory

    def _headers(self) -> dict[str, str]:
        return {"X-User-Id": self.user_id, "Accept": "application/json"}

    def _request(self, method: str, path: str, token: CancelToken | None = None, **kwargs: Any) -> dict[str, Any]:
        if token is None:
            return self._send(self._session_factory(), method, path, self.timeout, **kwargs)

        token.raise_if_cancelled()
        timeout = self.timeout
        remaining = token.remaining()
        if remaining is not None:
            timeout = max(min(timeout, remaining), MIN_TIMEOUT_SECONDS)

        # The request runs on its own thread so a cancel can return control at once
        session = self._session_factory()
        finished = threading.Event()
        outcome: dict[str, Any] = {}

        def send() -> None:
            try:
                outcome["value"] = self._send(session, method, path, timeout, **kwargs)
            except Exception as e:
                outcome["error"] = e
            finally:
                finished.set()

        token.on_cancel(finished.set)
        token.on_cancel(session.close)
        threading.Thread(target=send, name=f"ledgerly-{method.lower()}", daemon=True).start()
        finished.wait()

        if token.cancelled:
            logging.debug("%s %s cancelled, abandoning request after at most %.1fs", method, path, timeout)
            raise FetchCancelled()
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    def _send(self, session: requests.Session, method: str, path: str, timeout: float, **kwargs: Any) -> dict[str, Any]:
        try:
            response = session.request(
                method, f"{self.base_url}{path}", headers=self._headers(), timeout=timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        finally:
            session.close()

    def create_transaction(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Create a transaction. The suggestion, if any, arrives later."""
        return self._request("POST", "/api/transactions/", json=dict(payload))

    def get_transaction(self, transaction_id: str, token: CancelToken | None = None) -> dict[str, Any]:
        return self._request("GET", f"/api/transactions/{transaction_id}", token=token)

    def approve_suggestion(self, suggestion_id: str) -> dict[str, Any]:
        return self._request("POST", f"/api/suggestions/{suggestion_id}/approve")

    def reject_suggestion(self, suggestion_id: str) -> dict[str, Any]:
        return self._request("POST", f"/api/suggestions/{suggestion_id}/reject")


class TransactionViewCache:
    """In-memory transaction view models keyed by id.

    Views are plain dicts handed out by reference; updates mutate them in
    place so anything holding a view sees the new fields.
    """

    SUGGESTION_FIELDS = ("suggested_category_name", "suggestion")

    def __init__(self):
        self._views: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, transaction: Mapping[str, Any]) -> dict[str, Any]:
        with self._lock:
            view = self._views.setdefault(transaction["id"], {})
            view.update(transaction)
            return view

    def get(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._views.get(transaction_id)

    def apply_suggestion(self, transaction_id: str, transaction: Mapping[str, Any]) -> dict[str, Any] | None:
        """Copy the suggestion fields of a fetched transaction onto the cached view."""
        with self._lock:
            view = self._views.get(transaction_id)
            if view is None:
                logging.debug("No cached view for transaction %s, suggestion not applied", transaction_id)
                return None
            for field in self.SUGGESTION_FIELDS:
                if field in transaction:
                    view[field] = transaction[field]
            return view

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)
