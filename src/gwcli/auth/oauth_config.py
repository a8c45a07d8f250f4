"""
OAuth Configuration for gwcli.

This module centralizes the provider endpoints and the timing constants used
by the authorization flows.
"""

from dataclasses import dataclass

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

LOOPBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/oauth2/callback"

# The manual flow never listens; the provider redirects to a URL that does not
# load and the user pastes it back.
MANUAL_REDIRECT_URI = "http://localhost:1"

DEFAULT_AUTHORIZE_TIMEOUT = 120.0
DEFAULT_MANAGE_TIMEOUT = 600.0

# How long the success page stays served after a completed exchange. Must match
# the countdown in the success page script.
POST_SUCCESS_DISPLAY_SECONDS = 30

TOKEN_EXCHANGE_TIMEOUT = 30.0
SERVER_START_TIMEOUT = 3.0
SERVER_STOP_TIMEOUT = 3.0
KEYCHAIN_PREFLIGHT_TIMEOUT = 5.0


@dataclass(frozen=True)
class OAuthEndpoint:
    """Authorization and token endpoints of an OAuth2 provider."""

    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI

    def client_config(self, client_id: str, client_secret: str) -> dict:
        """Build an "installed" client config for google_auth_oauthlib."""
        return {
            "installed": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
            }
        }


GOOGLE_ENDPOINT = OAuthEndpoint()


def loopback_redirect_uri(port: int) -> str:
    """Get the redirect URI for a loopback listener on the given port."""
    return f"http://{LOOPBACK_HOST}:{port}{CALLBACK_PATH}"


def effective_timeout(timeout, default: float) -> float:
    """Replace an unset or non-positive timeout with the default."""
    if timeout is None or timeout <= 0:
        return default
    return float(timeout)
