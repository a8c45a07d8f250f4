"""
Interactive and manual OAuth2 authorization for gwcli.

AuthorizationFlow drives one authorization-code exchange and returns the
refresh token. The interactive variant listens on an ephemeral loopback port
for the browser redirect; the manual variant reads the redirect URL pasted
by the user.
"""

import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple
from urllib.parse import parse_qs, urlparse

from .client_credentials import ClientCredentials, read_client_credentials
from .google_auth import (
    build_authorization_url,
    exchange_code,
    open_browser,
    require_refresh_token,
)
from .oauth_callback_server import LoopbackServer, ResultSlot, create_callback_app
from .oauth_config import (
    DEFAULT_AUTHORIZE_TIMEOUT,
    GOOGLE_ENDPOINT,
    MANUAL_REDIRECT_URI,
    POST_SUCCESS_DISPLAY_SECONDS,
    TOKEN_EXCHANGE_TIMEOUT,
    OAuthEndpoint,
    effective_timeout,
    loopback_redirect_uri,
)
from .scopes import Service
from .state import StateToken, new_state
from ..utils.errors import (
    AuthorizationCancelledError,
    AuthorizationTimeoutError,
    EmptyScopesError,
    InputReadError,
    InvalidRedirectURLError,
    MissingCodeError,
    StateMismatchError,
)

logger = logging.getLogger(__name__)

CredentialsReader = Callable[[], ClientCredentials]
BrowserOpener = Callable[[str], Any]
# (credentials, code, redirect_uri, scopes, timeout=seconds) -> token response
TokenExchanger = Callable[..., Dict[str, Any]]


@dataclass
class AuthorizeOptions:
    """Options for one authorization attempt."""

    services: List[Service] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)
    manual: bool = False
    force_consent: bool = False
    timeout: Optional[float] = None


def extract_code_and_state(raw_url: str) -> Tuple[str, str]:
    """
    Parse the authorization code and state from a redirect URL.

    Returns:
        (code, state); state is empty if the URL has none.

    Raises:
        InvalidRedirectURLError: If the value is not an absolute URL.
        MissingCodeError: If the URL has no code parameter.
    """
    value = raw_url.strip()
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidRedirectURLError(value)

    query = parse_qs(parsed.query)
    code = (query.get("code") or [""])[0]
    if not code:
        raise MissingCodeError("no code found in URL")
    state = (query.get("state") or [""])[0]
    return code, state


class AuthorizationFlow:
    """
    Runs OAuth2 authorization-code flows.

    Every collaborator is injected and defaults to the real implementation,
    so tests can replace the browser, the token endpoint and the state source
    per instance.
    """

    def __init__(
        self,
        credentials_reader: CredentialsReader = read_client_credentials,
        browser_opener: BrowserOpener = open_browser,
        endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
        state_factory: Callable[[], str] = new_state,
        token_exchanger: Optional[TokenExchanger] = None,
        display_seconds: float = POST_SUCCESS_DISPLAY_SECONDS,
        out: Optional[TextIO] = None,
        stdin: Optional[TextIO] = None,
    ) -> None:
        self.credentials_reader = credentials_reader
        self.browser_opener = browser_opener
        self.endpoint = endpoint
        self.state_factory = state_factory
        self.token_exchanger = token_exchanger or self._default_exchanger
        self.display_seconds = display_seconds
        self.out = out or sys.stderr
        self.stdin = stdin or sys.stdin

        self._wake = threading.Event()
        self._cancelled = threading.Event()

    def _default_exchanger(
        self,
        credentials: ClientCredentials,
        code: str,
        redirect_uri: str,
        scopes: Sequence[str],
        timeout: float = TOKEN_EXCHANGE_TIMEOUT,
    ) -> Dict[str, Any]:
        return exchange_code(
            credentials, code, redirect_uri, scopes, self.endpoint, timeout=timeout
        )

    def cancel(self) -> None:
        """Cancel a running authorization from another thread."""
        self._cancelled.set()
        self._wake.set()

    def _print(self, *lines: str) -> None:
        for line in lines:
            print(line, file=self.out)
        self.out.flush()

    def authorize(self, options: AuthorizeOptions) -> str:
        """
        Run one authorization attempt.

        Returns:
            The refresh token.

        Raises:
            EmptyScopesError: If no scopes were requested.
            MissingCredentialsError: If no OAuth client is configured.
            StateMismatchError, MissingCodeError, InvalidRedirectURLError,
            TokenExchangeError, NoRefreshTokenError, InputReadError,
            AuthorizationTimeoutError, AuthorizationCancelledError,
            ListenerError: Terminal outcomes; nothing is retried.
        """
        timeout = effective_timeout(options.timeout, DEFAULT_AUTHORIZE_TIMEOUT)
        if not options.scopes:
            raise EmptyScopesError()

        credentials = self.credentials_reader()
        state = StateToken(self.state_factory())
        deadline = time.monotonic() + timeout
        scopes = list(options.scopes)

        self._cancelled.clear()
        self._wake.clear()

        try:
            if options.manual:
                return self._authorize_manual(credentials, scopes, state, options)
            return self._authorize_interactive(
                credentials, scopes, state, options, deadline, timeout
            )
        finally:
            state.invalidate()

    def _authorize_manual(
        self,
        credentials: ClientCredentials,
        scopes: List[str],
        state: StateToken,
        options: AuthorizeOptions,
    ) -> str:
        auth_url = build_authorization_url(
            credentials,
            scopes,
            MANUAL_REDIRECT_URI,
            state.value,
            force_consent=options.force_consent,
            endpoint=self.endpoint,
        )
        self._print(
            "Visit this URL to authorize:",
            auth_url,
            "",
            "After authorizing, you'll be redirected to a localhost URL that won't load.",
            "Copy the URL from your browser's address bar and paste it here.",
            "",
        )
        print("Paste redirect URL: ", end="", file=self.out)
        self.out.flush()

        try:
            line = self.stdin.readline()
        except OSError as e:
            raise InputReadError(f"failed to read redirect URL: {e}") from e
        if not line:
            raise InputReadError("no redirect URL provided (input closed)")

        code, got_state = extract_code_and_state(line)
        if got_state and not state.consume(got_state):
            raise StateMismatchError()

        token_response = self.token_exchanger(credentials, code, MANUAL_REDIRECT_URI, scopes)
        return require_refresh_token(token_response)

    def _authorize_interactive(
        self,
        credentials: ClientCredentials,
        scopes: List[str],
        state: StateToken,
        options: AuthorizeOptions,
        deadline: float,
        timeout: float,
    ) -> str:
        result = ResultSlot(self._wake)
        listener_error = ResultSlot(self._wake)
        app = create_callback_app(state, result, self.display_seconds)

        with LoopbackServer(app, on_error=listener_error.offer) as server:
            redirect_uri = loopback_redirect_uri(server.port)
            auth_url = build_authorization_url(
                credentials,
                scopes,
                redirect_uri,
                state.value,
                force_consent=options.force_consent,
                endpoint=self.endpoint,
            )
            self._print(
                "Opening browser for authorization…",
                "If the browser doesn't open, visit this URL:",
                auth_url,
            )
            try:
                self.browser_opener(auth_url)
            except Exception as e:
                logger.debug(f"Browser launch failed: {e}")

            code = self._wait_for_code(result, listener_error, deadline, timeout)

            # The exchange shares the authorization deadline.
            exchange_timeout = max(1.0, deadline - time.monotonic())
            token_response = self.token_exchanger(
                credentials, code, redirect_uri, scopes, timeout=exchange_timeout
            )
            refresh_token = require_refresh_token(token_response)

            # Keep serving so the success page can finish its countdown.
            self._linger(deadline)
            return refresh_token

    def _wait_for_code(
        self,
        result: ResultSlot,
        listener_error: ResultSlot,
        deadline: float,
        timeout: float,
    ) -> str:
        while True:
            if result.filled:
                outcome = result.value
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            if listener_error.filled:
                raise listener_error.value
            if self._cancelled.is_set():
                raise AuthorizationCancelledError("authorization cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthorizationTimeoutError(timeout)
            try:
                self._wake.wait(remaining)
            except KeyboardInterrupt:
                raise AuthorizationCancelledError("authorization interrupted") from None

    def _linger(self, deadline: float) -> None:
        wait = min(self.display_seconds, deadline - time.monotonic())
        if wait <= 0:
            return
        try:
            self._cancelled.wait(wait)
        except KeyboardInterrupt:
            logger.debug("Success page display interrupted")
