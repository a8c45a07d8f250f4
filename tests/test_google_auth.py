"""Tests for the authorization-code exchange."""

import os
from unittest.mock import patch

import pytest
from oauthlib.oauth2.rfc6749.errors import InvalidGrantError

from gwcli.auth.client_credentials import ClientCredentials
from gwcli.auth.google_auth import exchange_code
from gwcli.utils.errors import TokenExchangeError

CREDENTIALS = ClientCredentials("client-id", "client-secret")
REDIRECT_URI = "http://127.0.0.1:8765/oauth2/callback"
SCOPES = ["https://mail.google.com/"]


class TestExchangeCode:
    """Tests for exchange_code around the oauthlib flow."""

    def setup_method(self):
        self.patcher = patch("gwcli.auth.google_auth.create_oauth_flow")
        self.create_flow = self.patcher.start()
        self.fetch_token = self.create_flow.return_value.fetch_token

    def teardown_method(self):
        self.patcher.stop()

    def test_forwards_timeout(self):
        self.fetch_token.return_value = {"refresh_token": "1//refresh"}

        response = exchange_code(CREDENTIALS, "auth-code", REDIRECT_URI, SCOPES, timeout=7.5)

        assert response == {"refresh_token": "1//refresh"}
        self.fetch_token.assert_called_once_with(code="auth-code", timeout=7.5)

    def test_widened_scopes_accepted(self):
        """Previously granted scopes in the response do not fail the exchange."""
        warning = Warning('Scope has changed from "a" to "a b".')
        warning.token = {"refresh_token": "1//refresh", "scope": "a b"}
        self.fetch_token.side_effect = warning

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("OAUTHLIB_RELAX_TOKEN_SCOPE", None)
            response = exchange_code(CREDENTIALS, "auth-code", REDIRECT_URI, SCOPES)
            assert "OAUTHLIB_RELAX_TOKEN_SCOPE" not in os.environ

        assert response["refresh_token"] == "1//refresh"

    def test_rejected_code(self):
        self.fetch_token.side_effect = InvalidGrantError(description="Bad Request")

        with pytest.raises(TokenExchangeError, match="Bad Request"):
            exchange_code(CREDENTIALS, "auth-code", REDIRECT_URI, SCOPES)
