"""Tests for the browser-based account manager."""

import base64
import io
import json
import threading
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from gwcli.auth.accounts_server import AccountManagerServer, ManageServerOptions
from gwcli.auth.client_credentials import ClientCredentials
from gwcli.auth.oauth_callback_server import LoopbackServer
from gwcli.auth.scopes import Service
from gwcli.secrets.store import MemorySecretStore, Token
from gwcli.utils.errors import ListenerError

CSRF = "csrf-token-for-tests"


def fake_id_token(claims):
    """Build an unsigned JWT carrying the given claims."""

    def segment(data):
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return ".".join([segment({"alg": "RS256", "typ": "JWT"}), segment(claims), "c2ln"])


class AccountServerTestBase:
    def setup_method(self):
        self.store = MemorySecretStore()
        self.exchanger = Mock(
            return_value={
                "refresh_token": "1//refresh",
                "id_token": fake_id_token({"email": "New.User@Example.com"}),
            }
        )
        self.states = iter(["state-1", "state-2", "state-3"])
        self.stderr = io.StringIO()

    def make_server(self, options=None, browser_opener=None):
        return AccountManagerServer(
            self.store,
            options or ManageServerOptions(services=[Service.GMAIL, Service.DRIVE]),
            credentials_reader=lambda: ClientCredentials("client-id", "client-secret"),
            browser_opener=browser_opener or (lambda url: True),
            state_factory=lambda: next(self.states),
            token_exchanger=self.exchanger,
            csrf_factory=lambda: CSRF,
            display_seconds=0,
            out=self.stderr,
        )

    def add(self, email, default=False):
        self.store.set_token(email, Token(email=email, refresh_token="rt", services=["gmail"]))
        if default:
            self.store.set_default_account(email)


class TestAccountRoutes(AccountServerTestBase):
    """Tests for the JSON and HTML routes."""

    def setup_method(self):
        super().setup_method()
        self.server = self.make_server()
        self.server.port = 8765
        self.client = TestClient(self.server.app)

    def test_index_embeds_csrf_token(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert CSRF in response.text

    def test_accounts_listing(self):
        self.add("b@example.com")
        self.add("a@example.com")

        response = self.client.get("/accounts")
        assert response.json() == {
            "accounts": [
                {"email": "a@example.com", "services": ["gmail"], "isDefault": True},
                {"email": "b@example.com", "services": ["gmail"], "isDefault": False},
            ]
        }

    def test_accounts_listing_stored_default(self):
        self.add("a@example.com")
        self.add("b@example.com", default=True)

        accounts = self.client.get("/accounts").json()["accounts"]
        assert [a["isDefault"] for a in accounts] == [False, True]

    def test_accounts_listing_empty(self):
        assert self.client.get("/accounts").json() == {"accounts": []}

    def test_set_default(self):
        self.add("a@example.com")
        self.add("b@example.com")

        response = self.client.post(
            "/set-default", json={"email": "B@example.com"}, headers={"X-CSRF-Token": CSRF}
        )
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert self.store.get_default_account() == "b@example.com"

    def test_set_default_unknown_account(self):
        response = self.client.post(
            "/set-default", json={"email": "nobody@example.com"}, headers={"X-CSRF-Token": CSRF}
        )
        assert response.status_code == 404
        assert "error" in response.json()

    def test_remove_account(self):
        self.add("a@example.com", default=True)

        response = self.client.post(
            "/remove-account", json={"email": "a@example.com"}, headers={"X-CSRF-Token": CSRF}
        )
        assert response.status_code == 200
        assert self.store.list_tokens() == []
        assert self.store.get_default_account() is None

    def test_remove_unknown_account(self):
        response = self.client.post(
            "/remove-account", json={"email": "nobody@example.com"}, headers={"X-CSRF-Token": CSRF}
        )
        assert response.status_code == 404

    @pytest.mark.parametrize("path", ["/set-default", "/remove-account"])
    @pytest.mark.parametrize("headers", [{}, {"X-CSRF-Token": "wrong"}])
    def test_csrf_rejected_before_storage(self, path, headers):
        """Missing or wrong CSRF tokens never reach the store."""
        self.add("a@example.com")
        with patch.object(self.store, "_set_item") as set_item, patch.object(
            self.store, "_remove_item"
        ) as remove_item, patch.object(self.store, "_get_item") as get_item:
            response = self.client.post(path, json={"email": "a@example.com"}, headers=headers)

        assert response.status_code == 403
        assert response.json() == {"error": "invalid CSRF token"}
        set_item.assert_not_called()
        remove_item.assert_not_called()
        get_item.assert_not_called()

    def test_invalid_json(self):
        response = self.client.post(
            "/set-default",
            content=b"{not json",
            headers={"X-CSRF-Token": CSRF, "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_mutating_routes_are_post_only(self):
        assert self.client.get("/set-default").status_code == 405
        assert self.client.get("/remove-account").status_code == 405


class TestAccountAuthorization(AccountServerTestBase):
    """Tests for adding accounts through the browser."""

    def setup_method(self):
        super().setup_method()
        self.server = self.make_server()
        self.server.port = 8765
        self.client = TestClient(self.server.app)

    def start(self):
        response = self.client.get("/auth/start", follow_redirects=False)
        assert response.status_code == 302
        return parse_qs(urlparse(response.headers["location"]).query)

    def test_start_redirects_to_provider(self):
        params = self.start()
        assert params["state"] == ["state-1"]
        assert params["redirect_uri"] == ["http://127.0.0.1:8765/oauth2/callback"]
        scopes = params["scope"][0].split(" ")
        assert "openid" in scopes and "email" in scopes
        assert "https://mail.google.com/" in scopes
        assert scopes == sorted(scopes)

    def test_callback_stores_token(self):
        self.start()
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-1"})

        assert response.status_code == 200
        assert "new.user@example.com" in response.text.lower()
        token = self.store.get_token("new.user@example.com")
        assert token.refresh_token == "1//refresh"
        assert token.services == ["drive", "gmail"]
        assert self.server.added == ["new.user@example.com"]

    def test_duplicate_callback_exchanges_once(self):
        self.start()
        params = {"code": "c", "state": "state-1"}
        first = self.client.get("/oauth2/callback", params=params)
        second = self.client.get("/oauth2/callback", params=params)

        assert first.status_code == 200
        assert second.status_code == 409
        assert self.exchanger.call_count == 1

    def test_callback_without_start(self):
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-1"})
        assert response.status_code == 400
        self.exchanger.assert_not_called()

    def test_state_mismatch(self):
        self.start()
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "forged"})
        assert response.status_code == 400
        self.exchanger.assert_not_called()
        assert self.store.keys() == []

    def test_restart_replaces_state(self):
        self.start()
        self.start()
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-1"})
        assert response.status_code == 400
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-2"})
        assert response.status_code == 200

    def test_error_is_cancellation(self):
        self.start()
        response = self.client.get(
            "/oauth2/callback", params={"error": "access_denied", "state": "state-1"}
        )
        assert "Cancelled" in response.text
        self.exchanger.assert_not_called()

    def test_missing_email_claim(self):
        self.exchanger.return_value = {"refresh_token": "rt", "id_token": fake_id_token({})}
        self.start()
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-1"})
        assert response.status_code == 400
        assert self.store.keys() == []

    def test_missing_refresh_token(self):
        self.exchanger.return_value = {"id_token": fake_id_token({"email": "a@b.com"})}
        self.start()
        response = self.client.get("/oauth2/callback", params={"code": "c", "state": "state-1"})
        assert response.status_code == 400
        assert "force-consent" in response.text
        assert self.store.keys() == []


class TestAccountManagerRun(AccountServerTestBase):
    """Tests for the server lifecycle on a real loopback port."""

    def test_times_out(self):
        server = self.make_server(ManageServerOptions(timeout=0.3))
        assert server.run() == []

    def test_returns_after_first_account(self):
        def browser(url):
            with httpx.Client(base_url=url, trust_env=False, timeout=5) as client:
                start = client.get("/auth/start")
                state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
                client.get("/oauth2/callback", params={"code": "c", "state": state})

        server = self.make_server(ManageServerOptions(timeout=10), browser_opener=browser)
        assert server.run() == ["new.user@example.com"]
        assert self.store.get_token("new.user@example.com").refresh_token == "1//refresh"

    def test_default_services(self):
        server = self.make_server(ManageServerOptions())
        assert Service.KEEP not in server.services
        assert Service.GMAIL in server.services

    def test_listener_failure_raises(self):
        server = self.make_server(ManageServerOptions(timeout=10))

        def browser(url):
            server._listener_error.offer(ListenerError("listener failed"))

        server.browser_opener = browser
        with pytest.raises(ListenerError):
            server.run()

    def test_slow_store_does_not_stall_listener(self):
        """Pages keep answering while a mutating request waits on the store."""
        self.add("a@example.com")
        entered = threading.Event()
        release = threading.Event()
        get_token = self.store.get_token

        def slow_get_token(email):
            entered.set()
            release.wait(5)
            return get_token(email)

        self.store.get_token = slow_get_token
        server = self.make_server()
        statuses = []

        with LoopbackServer(server.app) as listener:

            def post():
                response = httpx.post(
                    f"{listener.base_url}/set-default",
                    json={"email": "a@example.com"},
                    headers={"X-CSRF-Token": CSRF},
                    trust_env=False,
                    timeout=10,
                )
                statuses.append(response.status_code)

            thread = threading.Thread(target=post)
            thread.start()
            try:
                assert entered.wait(5)
                response = httpx.get(f"{listener.base_url}/", trust_env=False, timeout=2)
                assert response.status_code == 200
            finally:
                release.set()
                thread.join(10)

        assert statuses == [200]
        assert self.store.get_default_account() == "a@example.com"
