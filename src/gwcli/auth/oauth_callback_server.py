"""
OAuth Callback Server for gwcli.

Runs a FastAPI app with uvicorn in a background thread on an ephemeral
loopback port, so the browser redirect can be accepted while the caller
blocks waiting for the result.
"""

import asyncio
import logging
import socket
import threading
import time
from typing import Any, Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from . import pages
from .oauth_config import (
    CALLBACK_PATH,
    LOOPBACK_HOST,
    POST_SUCCESS_DISPLAY_SECONDS,
    SERVER_START_TIMEOUT,
    SERVER_STOP_TIMEOUT,
)
from .state import StateToken
from ..utils.errors import (
    AuthorizationCancelledError,
    ListenerError,
    MissingCodeError,
    StateMismatchError,
)

logger = logging.getLogger(__name__)


class ResultSlot:
    """
    Write-once result cell.

    Only the first offer is kept; later offers are discarded. Several slots
    can share one wake-up event so a waiter can block on all of them at once.
    """

    def __init__(self, wake: Optional[threading.Event] = None) -> None:
        self._lock = threading.Lock()
        self._filled = False
        self._value: Any = None
        self.wake = wake or threading.Event()

    @property
    def filled(self) -> bool:
        return self._filled

    @property
    def value(self) -> Any:
        return self._value

    def offer(self, value: Any) -> bool:
        """
        Store a value if the slot is still empty.

        Returns:
            True if this call filled the slot.
        """
        with self._lock:
            if self._filled:
                return False
            self._value = value
            self._filled = True
        self.wake.set()
        return True


class LoopbackServer:
    """
    Minimal HTTP server bound to an ephemeral loopback port.

    Serves an ASGI app in a daemon thread. Use as a context manager so the
    listener is closed on every exit path.
    """

    def __init__(
        self,
        app: Any,
        host: str = LOOPBACK_HOST,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> None:
        self.app = app
        self.host = host
        self.on_error = on_error
        self.server: Optional[uvicorn.Server] = None
        self.server_thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self.port: Optional[int] = None
        self.is_running = False

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> int:
        """
        Bind the listener and start serving.

        Returns:
            The bound port.

        Raises:
            ListenerError: If the port cannot be bound or the server does not start.
        """
        if self.is_running:
            return self.port

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.bind((self.host, 0))
            sock.listen(16)
        except OSError as e:
            raise ListenerError(f"failed to start listener: {e}") from e

        self._socket = sock
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self.server = uvicorn.Server(config)

        def run_server() -> None:
            """Run the server in a separate thread."""
            try:
                asyncio.run(self.server.serve(sockets=[sock]))
            except Exception as e:
                logger.error(f"OAuth callback server error: {e}", exc_info=True)
                if self.on_error:
                    self.on_error(ListenerError(f"listener failed: {e}"))
            finally:
                self.is_running = False

        self.server_thread = threading.Thread(
            target=run_server, name="gwcli-oauth-listener", daemon=True
        )
        self.server_thread.start()

        # Wait for server to start
        start_time = time.monotonic()
        while time.monotonic() - start_time < SERVER_START_TIMEOUT:
            if self.server.started:
                self.is_running = True
                logger.info(f"OAuth callback server started on {self.base_url}")
                return self.port
            if not self.server_thread.is_alive():
                break
            time.sleep(0.02)

        self.stop()
        raise ListenerError(f"Failed to start OAuth server on {self.host}:{self.port}")

    def stop(self) -> None:
        """Stop the server and close the listening socket."""
        if self.server is not None:
            self.server.should_exit = True

        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=SERVER_STOP_TIMEOUT)
            if self.server_thread.is_alive():
                logger.warning("OAuth callback server did not stop in time")

        if self._socket is not None:
            self._socket.close()
            self._socket = None

        if self.is_running:
            logger.info("OAuth callback server stopped")
        self.is_running = False

    def __enter__(self) -> "LoopbackServer":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()


def create_callback_app(
    state: StateToken,
    result: ResultSlot,
    display_seconds: float = POST_SUCCESS_DISPLAY_SECONDS,
) -> FastAPI:
    """
    Create the single-shot callback app.

    The first request to the callback path decides the outcome: an
    authorization code, or an exception. Later requests are ignored.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(CALLBACK_PATH)
    def oauth_callback(request: Request) -> HTMLResponse:
        """Handle OAuth callback from Google."""
        if result.filled:
            logger.debug("Ignoring duplicate OAuth callback")
            return HTMLResponse(content=pages.render("already_processed"), status_code=409)

        params = request.query_params
        error = params.get("error")
        if error:
            logger.info(f"Authorization was not granted: {error}")
            result.offer(AuthorizationCancelledError(f"authorization error: {error}"))
            return HTMLResponse(content=pages.render("cancelled"))

        if not state.matches(params.get("state")):
            logger.warning("OAuth callback state mismatch")
            result.offer(StateMismatchError())
            return HTMLResponse(
                content=pages.render(
                    "error", {"error": "State mismatch - possible CSRF attack. Please try again."}
                ),
                status_code=400,
            )

        code = params.get("code")
        if not code:
            result.offer(MissingCodeError())
            return HTMLResponse(
                content=pages.render(
                    "error", {"error": "Missing authorization code. Please try again."}
                ),
                status_code=400,
            )

        if not result.offer(code):
            return HTMLResponse(content=pages.render("already_processed"), status_code=409)

        logger.info("OAuth callback: received authorization code")
        return HTMLResponse(content=pages.render("success", {"seconds": display_seconds}))

    return app
