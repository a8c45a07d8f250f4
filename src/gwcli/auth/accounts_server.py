"""
Browser-based account manager for gwcli.

A longer-lived loopback server that lets the user add, list, remove and pick
the default account from one browser session. Account additions go through
the same authorization URL and code exchange as the single-shot flow, but the
resulting token is written straight into the secret store.
"""

import json
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TextIO

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from . import pages
from .client_credentials import read_client_credentials
from .google_auth import (
    build_authorization_url,
    email_from_token_response,
    exchange_code,
    open_browser,
    require_refresh_token,
)
from .oauth_callback_server import LoopbackServer, ResultSlot
from .oauth_config import (
    CALLBACK_PATH,
    DEFAULT_MANAGE_TIMEOUT,
    GOOGLE_ENDPOINT,
    POST_SUCCESS_DISPLAY_SECONDS,
    OAuthEndpoint,
    effective_timeout,
    loopback_redirect_uri,
)
from .oauth_flow import BrowserOpener, CredentialsReader, TokenExchanger
from .scopes import IDENTITY_SCOPES, Service, scopes_for_services, user_services
from .state import StateToken, new_csrf_token, new_state, tokens_equal
from ..secrets.store import SecretStore, Token
from ..utils.errors import GwcliError, NotFoundError

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"


@dataclass
class ManageServerOptions:
    """Options for an account manager session."""

    services: List[Service] = field(default_factory=list)
    force_consent: bool = False
    timeout: Optional[float] = DEFAULT_MANAGE_TIMEOUT
    stay_open: bool = False


class AccountInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    services: List[str]
    is_default: bool = Field(alias="isDefault")


class AccountList(BaseModel):
    accounts: List[AccountInfo]


class EmailRequest(BaseModel):
    email: str


def _json_error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class AccountManagerServer:
    """
    Local account management server.

    The CSRF token is issued once per server and must accompany every
    mutating request. The OAuth state is replaced on each /auth/start and
    consumed by the first matching callback.
    """

    def __init__(
        self,
        store: SecretStore,
        options: Optional[ManageServerOptions] = None,
        credentials_reader: CredentialsReader = read_client_credentials,
        browser_opener: BrowserOpener = open_browser,
        endpoint: OAuthEndpoint = GOOGLE_ENDPOINT,
        state_factory: Callable[[], str] = new_state,
        token_exchanger: Optional[TokenExchanger] = None,
        csrf_factory: Callable[[], str] = new_csrf_token,
        display_seconds: float = POST_SUCCESS_DISPLAY_SECONDS,
        out: Optional[TextIO] = None,
    ) -> None:
        self.store = store
        self.options = options or ManageServerOptions()
        self.credentials_reader = credentials_reader
        self.browser_opener = browser_opener
        self.endpoint = endpoint
        self.state_factory = state_factory
        self.token_exchanger = token_exchanger or self._default_exchanger
        self.display_seconds = display_seconds
        self.out = out or sys.stderr

        self.csrf_token = csrf_factory()
        self.services = list(self.options.services) or user_services()
        self.scopes = sorted(set(scopes_for_services(self.services)) | set(IDENTITY_SCOPES))

        self.port: Optional[int] = None
        self.added: List[str] = []
        self._state: Optional[StateToken] = None
        self._state_lock = threading.Lock()
        self._wake = threading.Event()
        self._cancelled = threading.Event()
        self._result = ResultSlot(self._wake)
        self._listener_error = ResultSlot(self._wake)
        self.app = self.create_app()

    def _default_exchanger(self, credentials, code, redirect_uri, scopes):
        return exchange_code(credentials, code, redirect_uri, scopes, self.endpoint)

    @property
    def redirect_uri(self) -> str:
        return loopback_redirect_uri(self.port)

    def cancel(self) -> None:
        """Stop a running session from another thread."""
        self._cancelled.set()
        self._wake.set()

    def _check_csrf(self, request: Request) -> bool:
        return tokens_equal(self.csrf_token, request.headers.get(CSRF_HEADER))

    async def _read_email(self, request: Request) -> str:
        try:
            payload = EmailRequest.model_validate(json.loads(await request.body()))
        except ValueError as e:
            raise ValueError(f"invalid request body: {e}") from e
        email = payload.email.strip()
        if not email:
            raise ValueError("missing email")
        return email

    def list_accounts(self) -> AccountList:
        tokens = self.store.list_tokens()
        default = self.store.effective_default_account(tokens)
        return AccountList(
            accounts=[
                AccountInfo(
                    email=t.email,
                    services=sorted(t.services),
                    is_default=(t.email == default),
                )
                for t in tokens
            ]
        )

    def create_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get("/")
        def index() -> HTMLResponse:
            return HTMLResponse(pages.render("accounts", {"csrf_token": self.csrf_token}))

        @app.get("/accounts")
        def accounts() -> JSONResponse:
            try:
                listing = self.list_accounts()
            except GwcliError as e:
                logger.error(f"Failed to list accounts: {e.message}")
                return _json_error(e.message, 500)
            return JSONResponse(listing.model_dump(by_alias=True))

        @app.get("/auth/start")
        def auth_start():
            try:
                credentials = self.credentials_reader()
            except GwcliError as e:
                return HTMLResponse(pages.render("error", {"error": e.message}), status_code=500)

            state = StateToken(self.state_factory())
            with self._state_lock:
                if self._state is not None:
                    self._state.invalidate()
                self._state = state

            auth_url = build_authorization_url(
                credentials,
                self.scopes,
                self.redirect_uri,
                state.value,
                force_consent=self.options.force_consent,
                endpoint=self.endpoint,
            )
            return RedirectResponse(auth_url, status_code=302)

        @app.get(CALLBACK_PATH)
        def oauth_callback(request: Request) -> HTMLResponse:
            return self._handle_callback(request)

        @app.post("/set-default")
        async def set_default(request: Request) -> JSONResponse:
            if not self._check_csrf(request):
                return _json_error("invalid CSRF token", 403)
            try:
                email = await self._read_email(request)
            except ValueError as e:
                return _json_error(str(e), 400)
            # Store access may block on a keychain prompt or key derivation.
            return await run_in_threadpool(self._set_default, email)

        @app.post("/remove-account")
        async def remove_account(request: Request) -> JSONResponse:
            if not self._check_csrf(request):
                return _json_error("invalid CSRF token", 403)
            try:
                email = await self._read_email(request)
            except ValueError as e:
                return _json_error(str(e), 400)
            return await run_in_threadpool(self._remove_account, email)

        return app

    def _set_default(self, email: str) -> JSONResponse:
        try:
            self.store.get_token(email)
            self.store.set_default_account(email)
        except NotFoundError:
            return _json_error(f"account not found: {email}", 404)
        except GwcliError as e:
            return _json_error(e.message, 500)
        logger.info(f"Default account set to {email}")
        return JSONResponse({"success": True})

    def _remove_account(self, email: str) -> JSONResponse:
        try:
            self.store.delete_token(email)
        except NotFoundError:
            return _json_error(f"account not found: {email}", 404)
        except GwcliError as e:
            return _json_error(e.message, 500)
        logger.info(f"Removed account {email}")
        return JSONResponse({"success": True})

    def _handle_callback(self, request: Request) -> HTMLResponse:
        params = request.query_params

        with self._state_lock:
            state = self._state

        error = params.get("error")
        if error:
            if state is not None:
                state.consume(params.get("state"))
            logger.info(f"Account authorization was not granted: {error}")
            return HTMLResponse(pages.render("cancelled"))

        if state is None:
            return HTMLResponse(
                pages.render("error", {"error": "No authorization in progress."}),
                status_code=400,
            )
        if not state.consume(params.get("state")):
            if state.consumed and tokens_equal(state.value, params.get("state")):
                return HTMLResponse(pages.render("already_processed"), status_code=409)
            logger.warning("Account manager callback state mismatch")
            return HTMLResponse(
                pages.render("error", {"error": "State mismatch - possible CSRF attack."}),
                status_code=400,
            )

        code = params.get("code")
        if not code:
            return HTMLResponse(
                pages.render("error", {"error": "Missing authorization code."}),
                status_code=400,
            )

        try:
            credentials = self.credentials_reader()
            response = self.token_exchanger(credentials, code, self.redirect_uri, self.scopes)
            refresh_token = require_refresh_token(response)
        except GwcliError as e:
            logger.error(f"Account authorization failed: {e.message}")
            return HTMLResponse(pages.render("error", {"error": e.message}), status_code=400)

        email = email_from_token_response(response)
        if not email:
            return HTMLResponse(
                pages.render("error", {"error": "Could not determine the account email."}),
                status_code=400,
            )

        token = Token(
            email=email,
            refresh_token=refresh_token,
            services=sorted(s.value for s in self.services),
            scopes=list(self.scopes),
        )
        try:
            self.store.set_token(email, token)
        except GwcliError as e:
            return HTMLResponse(pages.render("error", {"error": e.message}), status_code=500)

        self.added.append(email.strip().lower())
        self._result.offer(email)
        print(f"Added account {email}", file=self.out)
        return HTMLResponse(
            pages.render(
                "success",
                {
                    "email": email,
                    "services": token.services,
                    "seconds": self.display_seconds,
                },
            )
        )

    def run(self) -> List[str]:
        """
        Serve until the session ends.

        The session ends on timeout, cancellation or interrupt (normal
        return), listener failure (raises ListenerError), or the first added
        account unless stay_open is set.

        Returns:
            Emails of the accounts added during the session.
        """
        timeout = effective_timeout(self.options.timeout, DEFAULT_MANAGE_TIMEOUT)
        deadline = time.monotonic() + timeout

        with LoopbackServer(self.app, on_error=self._listener_error.offer) as server:
            self.port = server.port
            url = server.base_url + "/"
            print(f"Account manager running at {url}", file=self.out)
            try:
                self.browser_opener(url)
            except Exception as e:
                logger.debug(f"Browser launch failed: {e}")

            try:
                self._serve_until_done(deadline)
            except KeyboardInterrupt:
                logger.info("Account manager interrupted")
            finally:
                with self._state_lock:
                    if self._state is not None:
                        self._state.invalidate()

        return list(self.added)

    def _serve_until_done(self, deadline: float) -> None:
        while True:
            if self._listener_error.filled:
                raise self._listener_error.value
            if self._cancelled.is_set():
                return
            if self._result.filled and not self.options.stay_open:
                self._linger(deadline)
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info("Account manager session timed out")
                return
            self._wake.wait(remaining)
            self._wake.clear()

    def _linger(self, deadline: float) -> None:
        wait = min(self.display_seconds, deadline - time.monotonic())
        if wait > 0:
            self._cancelled.wait(wait)
