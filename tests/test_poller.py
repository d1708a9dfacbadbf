"""Tests for the client-side suggestion poller."""

import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import MagicMock

import pytest
import requests

from src.ledgerly.client.api_client import LedgerlyClient, TransactionViewCache
from src.ledgerly.client.poller import (
    CancelToken,
    FetchCancelled,
    PollState,
    SuggestionPoller,
    poll_for_suggestion,
)

PENDING = {"id": "tx-1", "description": "Starbucks latte", "suggested_category_name": None, "suggestion": None}
FOUND = {
    "id": "tx-1",
    "description": "Starbucks latte",
    "suggested_category_name": "Coffee Shops",
    "suggestion": {"id": "sg-1", "suggested_category_name": "Coffee Shops", "confidence_score": 0.87},
}


class ScriptedFetch:
    """Returns queued results (or raises queued errors), then repeats the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.tokens = []
        self._lock = threading.Lock()

    def __call__(self, transaction_id, token):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.tokens.append(token)
            result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        try:
            if isinstance(result, Exception):
                raise result
            if callable(result):
                return result(token)
            return result
        finally:
            with self._lock:
                self.active -= 1


class Recorder:
    def __init__(self):
        self.found = []
        self.timeouts = 0
        self.errors = []

    def on_found(self, transaction):
        self.found.append(transaction)

    def on_timeout(self):
        self.timeouts += 1

    def on_error(self, error):
        self.errors.append(error)


def _poller(fetch, recorder, interval=0.01, timeout=2.0):
    return SuggestionPoller(
        fetch,
        "tx-1",
        recorder.on_found,
        recorder.on_timeout,
        interval=interval,
        timeout=timeout,
        on_error=recorder.on_error,
    )


class TestSuggestionPoller:
    def test_found_after_a_few_polls(self):
        fetch = ScriptedFetch(PENDING, PENDING, FOUND)
        recorder = Recorder()
        poller = _poller(fetch, recorder)

        assert poller.state == PollState.IDLE
        poller.start()

        assert poller.wait(5) is True
        assert poller.state == PollState.FOUND
        assert recorder.found == [FOUND]
        assert recorder.timeouts == 0
        assert fetch.calls == 3

    def test_times_out_exactly_once_and_stops_fetching(self):
        fetch = ScriptedFetch(PENDING)
        recorder = Recorder()
        poller = _poller(fetch, recorder, interval=0.02, timeout=0.15)

        poller.start()

        assert poller.wait(5) is True
        assert poller.state == PollState.TIMED_OUT
        assert recorder.timeouts == 1
        assert recorder.found == []

        calls_at_timeout = fetch.calls
        threading.Event().wait(0.1)
        assert fetch.calls == calls_at_timeout

    def test_fetches_never_overlap(self):
        def slow(token):
            token_released = threading.Event()
            token_released.wait(0.05)
            return PENDING

        fetch = ScriptedFetch(slow)
        recorder = Recorder()
        poller = _poller(fetch, recorder, interval=0.001, timeout=0.3)

        poller.start()
        poller.wait(5)

        assert fetch.calls >= 2
        assert fetch.max_active == 1

    def test_fetch_errors_do_not_stop_polling(self):
        fetch = ScriptedFetch(requests.ConnectionError("offline"), PENDING, FOUND)
        recorder = Recorder()
        poller = _poller(fetch, recorder)

        poller.start()

        assert poller.wait(5) is True
        assert poller.state == PollState.FOUND
        assert len(recorder.errors) == 1

    def test_cancel_aborts_inflight_fetch_and_silences_callbacks(self):
        fetch_started = threading.Event()

        def blocking(token):
            fetch_started.set()
            aborted = threading.Event()
            token.on_cancel(aborted.set)
            aborted.wait(5)
            token.raise_if_cancelled()
            return FOUND

        fetch = ScriptedFetch(blocking)
        recorder = Recorder()
        poller = _poller(fetch, recorder, timeout=0.3)

        poller.start()
        assert fetch_started.wait(5)
        poller.cancel()

        assert poller.wait(1) is True
        assert poller.state == PollState.CANCELLED
        assert fetch.tokens[0].cancelled is True

        # Past the deadline: neither callback fires after cancellation
        threading.Event().wait(0.4)
        assert recorder.found == []
        assert recorder.timeouts == 0
        assert recorder.errors == []
        assert fetch.calls == 1

    def test_result_arriving_after_timeout_is_ignored(self):
        def late(token):
            threading.Event().wait(0.2)
            return FOUND

        fetch = ScriptedFetch(late)
        recorder = Recorder()
        poller = _poller(fetch, recorder, timeout=0.05)

        poller.start()
        poller.wait(5)
        threading.Event().wait(0.3)

        assert poller.state == PollState.TIMED_OUT
        assert recorder.timeouts == 1
        assert recorder.found == []

    def test_cancel_before_start(self):
        fetch = ScriptedFetch(FOUND)
        recorder = Recorder()
        poller = _poller(fetch, recorder)

        poller.cancel()
        poller.start()

        assert poller.state == PollState.CANCELLED
        assert fetch.calls == 0

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            SuggestionPoller(ScriptedFetch(PENDING), "tx-1", print, print, interval=0, timeout=1)


class TestCancelToken:
    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.on_cancel(lambda: calls.append("a"))

        token.cancel()
        token.cancel()

        assert calls == ["a"]
        with pytest.raises(FetchCancelled):
            token.raise_if_cancelled()

    def test_late_registration_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []

        token.on_cancel(lambda: calls.append("late"))

        assert calls == ["late"]


class TestLedgerlyClient:
    def _client(self, session):
        return LedgerlyClient("http://testserver/", "user-1", session_factory=lambda: session)

    def test_get_transaction_sends_user_header(self):
        session = MagicMock(spec=requests.Session)
        session.request.return_value.json.return_value = PENDING

        result = self._client(session).get_transaction("tx-1")

        assert result == PENDING
        args, kwargs = session.request.call_args
        assert args == ("GET", "http://testserver/api/transactions/tx-1")
        assert kwargs["headers"]["X-User-Id"] == "user-1"
        session.close.assert_called()

    def test_create_and_decide(self):
        session = MagicMock(spec=requests.Session)
        session.request.return_value.json.return_value = PENDING
        client = self._client(session)

        assert client.create_transaction({"description": "Starbucks latte"}) == PENDING
        client.approve_suggestion("sg-1")
        client.reject_suggestion("sg-2")

        calls = [(c.args, c.kwargs.get("json")) for c in session.request.call_args_list]
        assert calls == [
            (("POST", "http://testserver/api/transactions/"), {"description": "Starbucks latte"}),
            (("POST", "http://testserver/api/suggestions/sg-1/approve"), None),
            (("POST", "http://testserver/api/suggestions/sg-2/reject"), None),
        ]

    def test_http_errors_propagate(self):
        session = MagicMock(spec=requests.Session)
        session.request.return_value.raise_for_status.side_effect = requests.HTTPError("404 Not Found")

        with pytest.raises(requests.HTTPError):
            self._client(session).get_transaction("missing", token=CancelToken())

    def test_already_cancelled_token_skips_request(self):
        session = MagicMock(spec=requests.Session)
        token = CancelToken()
        token.cancel()

        with pytest.raises(FetchCancelled):
            self._client(session).get_transaction("tx-1", token=token)

        session.request.assert_not_called()


class TestPollForSuggestion:
    def test_found_suggestion_updates_cached_view_in_place(self):
        cache = TransactionViewCache()
        view = cache.put(PENDING)
        client = MagicMock(spec=LedgerlyClient)
        client.get_transaction.side_effect = [PENDING, FOUND]
        found = []

        poller = poll_for_suggestion(client, "tx-1", cache=cache, on_found=found.append, interval=0.01, timeout=2)

        assert poller.wait(5) is True
        assert found == [FOUND]
        assert view["suggested_category_name"] == "Coffee Shops"
        assert view["suggestion"]["confidence_score"] == 0.87
        assert cache.get("tx-1") is view
        assert len(cache) == 1

    def test_timeout_callback(self):
        client = MagicMock(spec=LedgerlyClient)
        client.get_transaction.return_value = PENDING
        timeouts = []

        poller = poll_for_suggestion(
            client, "tx-1", on_timeout=lambda: timeouts.append(True), interval=0.01, timeout=0.1
        )

        assert poller.wait(5) is True
        assert poller.state == PollState.TIMED_OUT
        assert timeouts == [True]


class SlowHandler(BaseHTTPRequestHandler):
    """Holds every request open until the server is released."""

    def do_GET(self):
        self.server.paths.append(self.path)
        self.server.release.wait(5)
        body = json.dumps(PENDING).encode()
        try:
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except OSError:
            # The client hung up first
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), SlowHandler)
    server.paths = []
    server.release = threading.Event()
    server.url = f"http://127.0.0.1:{server.server_address[1]}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield server

    server.release.set()
    server.shutdown()
    server.server_close()


def _wait_for_request(server, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not server.paths and time.monotonic() < deadline:
        time.sleep(0.01)
    assert server.paths, "request never reached the server"


class TestCancellingRealRequests:
    def test_cancel_returns_control_while_server_is_still_answering(self, slow_server):
        client = LedgerlyClient(slow_server.url, "user-1")
        token = CancelToken()
        result = {}

        def fetch():
            start = time.monotonic()
            try:
                result["value"] = client.get_transaction("tx-1", token)
            except Exception as e:
                result["error"] = e
            result["elapsed"] = time.monotonic() - start

        caller = threading.Thread(target=fetch)
        caller.start()
        _wait_for_request(slow_server)
        token.cancel()
        caller.join(5)

        assert not caller.is_alive()
        assert "value" not in result
        assert isinstance(result["error"], FetchCancelled)
        assert result["elapsed"] < 1.5

    def test_request_timeout_is_capped_by_token_deadline(self, slow_server):
        client = LedgerlyClient(slow_server.url, "user-1", timeout=10.0)
        token = CancelToken(deadline=time.monotonic() + 0.3)
        start = time.monotonic()

        with pytest.raises(requests.Timeout):
            client.get_transaction("tx-1", token)

        assert time.monotonic() - start < 2.0
        assert token.remaining() == 0.0

    def test_poller_cancel_stops_its_thread_and_fetches(self, slow_server):
        client = LedgerlyClient(slow_server.url, "user-1")
        recorder = Recorder()
        poller = SuggestionPoller(
            client.get_transaction,
            "tx-slow",
            recorder.on_found,
            recorder.on_timeout,
            interval=0.01,
            timeout=10.0,
            on_error=recorder.on_error,
        )

        poller.start()
        _wait_for_request(slow_server)
        start = time.monotonic()
        poller.cancel()

        assert time.monotonic() - start < 1.5
        assert poller.state == PollState.CANCELLED
        assert not any(t.name == "suggestion-poller-tx-slow" and t.is_alive() for t in threading.enumerate())

        slow_server.release.set()
        threading.Event().wait(0.2)
        assert slow_server.paths == ["/api/transactions/tx-slow"]
        assert recorder.found == []
        assert recorder.timeouts == 0
        assert recorder.errors == []
