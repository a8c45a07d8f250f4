"""
Core Google OAuth logic for gwcli.

This module builds authorization URLs and exchanges authorization codes at the
provider's token endpoint. Both the single-shot flow and the accounts manager
go through these functions.
"""

import logging
import webbrowser
from typing import Any, Dict, List, Optional, Sequence

from google.auth import jwt
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from requests.exceptions import RequestException

from .client_credentials import ClientCredentials
from .oauth_config import GOOGLE_ENDPOINT, TOKEN_EXCHANGE_TIMEOUT, OAuthEndpoint
from ..utils.errors import NoRefreshTokenError, TokenExchangeError

logger = logging.getLogger(__name__)


def create_oauth_flow(
    credentials: ClientCredentials,
    scopes: Sequence[str],
    redirect_uri: str,
    state: Optional[str] = None,
    endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
) -> Flow:
    """
    Create an OAuth flow for the installed-app client.

    Args:
        credentials: OAuth client id/secret
        scopes: Sorted list of OAuth scopes
        redirect_uri: OAuth redirect URI
        state: State parameter embedded in the authorization URL
        endpoint: Provider endpoints

    Returns:
        Configured OAuth Flow object
    """
    # The authorization URL and the code exchange are built from separate
    # Flow instances, so no PKCE verifier can be carried between them.
    flow = Flow.from_client_config(
        endpoint.client_config(credentials.client_id, credentials.client_secret),
        scopes=list(scopes),
        redirect_uri=redirect_uri,
        state=state,
        autogenerate_code_verifier=False,
    )
    return flow


def build_authorization_url(
    credentials: ClientCredentials,
    scopes: Sequence[str],
    redirect_uri: str,
    state: str,
    force_consent: bool = False,
    endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
) -> str:
    """
    Build the provider authorization URL.

    The URL carries client_id, redirect_uri, the space-joined scopes, state,
    response_type=code, access_type=offline and include_granted_scopes=true,
    plus prompt=consent when force_consent is set.
    """
    flow = create_oauth_flow(credentials, scopes, redirect_uri, state, endpoint)

    params: Dict[str, str] = {
        "access_type": "offline",
        "include_granted_scopes": "true",
    }
    if force_consent:
        params["prompt"] = "consent"

    auth_url, _ = flow.authorization_url(**params)
    logger.debug(f"Built authorization URL (state: {state[:8]}...)")
    return auth_url


def exchange_code(
    credentials: ClientCredentials,
    code: str,
    redirect_uri: str,
    scopes: Sequence[str],
    endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
    timeout: float = TOKEN_EXCHANGE_TIMEOUT,
) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens.

    Google may return previously granted scopes in addition to the requested
    ones (include_granted_scopes=true). oauthlib reports that as a Warning
    carrying the parsed token unless OAUTHLIB_RELAX_TOKEN_SCOPE is set; the
    token is accepted either way.

    Returns:
        The token endpoint response.

    Raises:
        TokenExchangeError: If the provider rejects the code or is unreachable.
    """
    flow = create_oauth_flow(credentials, scopes, redirect_uri, endpoint=endpoint)
    try:
        token = flow.fetch_token(code=code, timeout=timeout)
    except OAuth2Error as e:
        logger.error(f"Token endpoint rejected the authorization code: {e.error}")
        raise TokenExchangeError(
            f"token exchange failed: {e.description or e.error}",
            response=getattr(e, "json", None) or e.error,
        ) from e
    except (RequestException, ValueError) as e:
        logger.error(f"Token exchange request failed: {e}")
        raise TokenExchangeError(f"token exchange failed: {e}") from e
    except Warning as e:
        token = getattr(e, "token", None)
        if token is None:
            raise
        logger.debug(f"Granted scopes differ from requested: {e}")

    logger.info("Successfully exchanged authorization code for tokens")
    return dict(token)


def require_refresh_token(token_response: Dict[str, Any]) -> str:
    """
    Get the refresh token from a token response.

    Raises:
        NoRefreshTokenError: If the provider omitted it.
    """
    refresh_token = (token_response.get("refresh_token") or "").strip()
    if not refresh_token:
        raise NoRefreshTokenError()
    return refresh_token


def email_from_token_response(token_response: Dict[str, Any]) -> Optional[str]:
    """
    Read the account email from the ID token in a token response.

    The ID token comes straight from the token endpoint over TLS, so its
    signature is not re-verified here.
    """
    id_token = token_response.get("id_token")
    if not id_token:
        return None
    try:
        claims = jwt.decode(id_token, verify=False)
    except (ValueError, GoogleAuthError) as e:
        logger.warning(f"Could not decode ID token: {e}")
        return None
    email = claims.get("email")
    return email.strip() if isinstance(email, str) and email.strip() else None


def check_refresh_token(
    credentials: ClientCredentials,
    refresh_token: str,
    scopes: List[str],
    endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
) -> None:
    """
    Verify a refresh token by exchanging it for an access token.

    Raises:
        TokenExchangeError: If the refresh fails.
    """
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=endpoint.token_uri,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
        scopes=scopes or None,
    )
    try:
        creds.refresh(Request())
    except RefreshError as e:
        raise TokenExchangeError(f"refresh failed: {e}") from e
    except GoogleAuthError as e:
        raise TokenExchangeError(f"refresh failed: {e}") from e


def open_browser(url: str) -> bool:
    """
    Open a URL in the default browser.

    Returns:
        True if a browser was launched. Failures are logged, never raised.
    """
    try:
        return webbrowser.open(url)
    except webbrowser.Error as e:
        logger.debug(f"Could not open browser: {e}")
        return False
