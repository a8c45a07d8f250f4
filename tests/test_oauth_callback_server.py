"""Unit tests for the single-shot OAuth callback server."""

import threading

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gwcli.auth import pages
from gwcli.auth.oauth_callback_server import LoopbackServer, ResultSlot, create_callback_app
from gwcli.auth.state import StateToken
from gwcli.utils.errors import (
    AuthorizationCancelledError,
    MissingCodeError,
    StateMismatchError,
)


class TestResultSlot:
    """Tests for the write-once result cell."""

    def test_first_offer_wins(self):
        slot = ResultSlot()
        assert slot.offer("first") is True
        assert slot.offer("second") is False
        assert slot.value == "first"
        assert slot.wake.is_set()

    def test_shared_wake_event(self):
        wake = threading.Event()
        result, error = ResultSlot(wake), ResultSlot(wake)
        error.offer(RuntimeError("boom"))
        assert wake.is_set()
        assert not result.filled

    def test_concurrent_offers(self):
        slot = ResultSlot()
        barrier = threading.Barrier(10)
        wins = []

        def worker(i):
            barrier.wait()
            if slot.offer(i):
                wins.append(i)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert slot.value == wins[0]


class TestCallbackApp:
    """Tests for the callback handler."""

    def setup_method(self):
        self.state = StateToken("expected-state")
        self.result = ResultSlot()
        self.client = TestClient(create_callback_app(self.state, self.result, display_seconds=7))

    def test_success(self):
        response = self.client.get("/oauth2/callback", params={"code": "abc", "state": "expected-state"})
        assert response.status_code == 200
        assert "Authorization Successful" in response.text
        assert self.result.value == "abc"

    def test_duplicate_delivery_ignored(self):
        """A second delivery after the first result has no effect."""
        params = {"code": "abc", "state": "expected-state"}
        self.client.get("/oauth2/callback", params=params)
        response = self.client.get("/oauth2/callback", params={"code": "other", "state": "expected-state"})
        assert response.status_code == 409
        assert self.result.value == "abc"

    def test_state_mismatch(self):
        """A wrong state is a CSRF failure even with a code present."""
        response = self.client.get("/oauth2/callback", params={"code": "abc", "state": "forged"})
        assert response.status_code == 400
        assert isinstance(self.result.value, StateMismatchError)

    def test_missing_state(self):
        response = self.client.get("/oauth2/callback", params={"code": "abc"})
        assert response.status_code == 400
        assert isinstance(self.result.value, StateMismatchError)

    def test_error_is_cancellation(self):
        """error= means cancellation even when a code is also present."""
        response = self.client.get(
            "/oauth2/callback",
            params={"error": "access_denied", "code": "abc", "state": "expected-state"},
        )
        assert response.status_code == 200
        assert "Cancelled" in response.text
        assert isinstance(self.result.value, AuthorizationCancelledError)

    def test_missing_code(self):
        response = self.client.get("/oauth2/callback", params={"state": "expected-state"})
        assert response.status_code == 400
        assert isinstance(self.result.value, MissingCodeError)

    def test_unknown_path(self):
        assert self.client.get("/other").status_code == 404
        assert not self.result.filled

    def test_success_page_countdown(self):
        response = self.client.get("/oauth2/callback", params={"code": "abc", "state": "expected-state"})
        assert "var remaining = 7;" in response.text


class TestLoopbackServer:
    """Tests for the background loopback listener."""

    def test_serves_and_stops(self):
        app = FastAPI()

        @app.get("/ping")
        def ping():
            return {"ok": True}

        with LoopbackServer(app) as server:
            assert server.port > 0
            assert server.base_url == f"http://127.0.0.1:{server.port}"
            response = httpx.get(f"{server.base_url}/ping", trust_env=False)
            assert response.json() == {"ok": True}

        assert not server.is_running
        assert not server.server_thread.is_alive()


class TestPages:
    def test_escapes_values(self):
        html = pages.render("error", {"error": "<script>x</script>"})
        assert "<script>x</script>" not in html
        assert "&lt;script&gt;" in html

    def test_accounts_page_embeds_csrf_token(self):
        html = pages.render("accounts", {"csrf_token": "tok123"})
        assert 'var csrfToken = "tok123";' in html
        assert "X-CSRF-Token" in html
