"""Single-use loopback HTTP listener that receives the authorization redirect.

:class:`CallbackListener` binds a small :class:`http.server.HTTPServer` on the
loopback interface, serves it from a daemon thread, and settles an
:class:`asyncio.Future` on the event loop that started it. It settles
exactly once; the first qualifying request decides the outcome and every
later request is answered with a neutral page.

Lifecycle::

    idle --start()--> listening --callback--> completed | failed
                               \\--timeout--> timed_out

Only one listener per port may exist in a process. A second
:meth:`~CallbackListener.start` on a busy port fails immediately with
:attr:`~credgate.exceptions.FlowFailure.PORT_IN_USE` instead of waiting
for the OS bind to complain.
"""

from __future__ import annotations

import asyncio
import enum
import errno
import html
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from credgate.exceptions import AuthorizationFlowError, FlowFailure
from credgate.models import DEFAULT_CALLBACK_PATH, DEFAULT_CALLBACK_PORT

logger = logging.getLogger(__name__)

_active_ports: set[int] = set()
_ports_lock = threading.Lock()

_SUCCESS_BODY = "Authorization successful! You can close this window and return to the terminal."
_WAITING_BODY = "Waiting for authorization..."


class ListenerState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


def active_ports() -> frozenset[int]:
    """Ports currently held by a listener in this process."""
    with _ports_lock:
        return frozenset(_active_ports)


def _page(message: str) -> str:
    return f"<html><body><h2>{html.escape(message)}</h2></body></html>"


class CallbackListener:
    """Loopback listener for one authorization attempt.

    Args:
        host: Bind address. Defaults to ``127.0.0.1``.
        port: Bind port. ``0`` asks the OS for a free port; the bound port is
            available from :attr:`port` once started.
        path: Callback path the redirect URI points at.
        timeout: Seconds :meth:`wait` waits before failing with
            :attr:`~credgate.exceptions.FlowFailure.TIMEOUT`.
        expected_state: When set, a callback whose ``state`` differs fails
            with :attr:`~credgate.exceptions.FlowFailure.STATE_MISMATCH`.

    Example::

        listener = CallbackListener(port=0)
        listener.start()
        webbrowser.open(build_url(redirect_uri=listener.redirect_uri))
        code = await listener.wait()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = DEFAULT_CALLBACK_PATH,
        timeout: float = 300.0,
        expected_state: Optional[str] = None,
    ) -> None:
        self.host = host
        self.path = path
        self.timeout = timeout
        self.expected_state = expected_state
        self._requested_port = port
        self._bound_port: Optional[int] = None
        self._state = ListenerState.IDLE
        self._lock = threading.Lock()
        # Held for the whole of close() so a second caller returns only
        # once the port is actually released.
        self._close_lock = threading.Lock()
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._future: Optional[asyncio.Future[str]] = None
        self._closed = False
        self._code: Optional[str] = None
        self._error: Optional[AuthorizationFlowError] = None

    # --- properties ---

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int:
        """The bound port once started, otherwise the requested one."""
        return self._bound_port if self._bound_port is not None else self._requested_port

    @property
    def redirect_uri(self) -> str:
        host = "localhost" if self.host in ("127.0.0.1", "localhost") else self.host
        return f"http://{host}:{self.port}{self.path}"

    @property
    def settled(self) -> bool:
        return self._state not in (ListenerState.IDLE, ListenerState.LISTENING)

    @property
    def code(self) -> Optional[str]:
        """The authorization code once completed."""
        return self._code

    @property
    def error(self) -> Optional[AuthorizationFlowError]:
        """The failure once failed or timed out."""
        return self._error

    # --- lifecycle ---

    def start(self) -> None:
        """Bind the port and start serving in a daemon thread.

        Must be called from a coroutine: the outcome is delivered to the
        running event loop.

        Raises:
            AuthorizationFlowError: ``port_in_use`` when another listener
                holds the port, ``listener_error`` for other bind failures.
        """
        if self._state is not ListenerState.IDLE:
            raise RuntimeError(f"Listener already started (state: {self._state.value})")

        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()

        with _ports_lock:
            if self._requested_port and self._requested_port in _active_ports:
                raise AuthorizationFlowError(
                    f"Callback port {self._requested_port} is already in use by another "
                    "authorization attempt",
                    FlowFailure.PORT_IN_USE,
                )
            try:
                self._server = HTTPServer(
                    (self.host, self._requested_port), self._make_handler()
                )
            except OSError as exc:
                if exc.errno == errno.EADDRINUSE:
                    raise AuthorizationFlowError(
                        f"Callback port {self._requested_port} is already in use",
                        FlowFailure.PORT_IN_USE,
                    ) from exc
                raise AuthorizationFlowError(
                    f"Could not start callback listener: {exc}", FlowFailure.LISTENER_ERROR
                ) from exc
            self._bound_port = self._server.server_address[1]
            _active_ports.add(self._bound_port)

        self._state = ListenerState.LISTENING
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"credgate-callback-{self._bound_port}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Callback listener on %s", self.redirect_uri)

    async def wait(self) -> str:
        """Wait for the callback and return the authorization code.

        The listener is closed when this returns or raises.

        Raises:
            AuthorizationFlowError: With the failure reason of the settling
                request, or ``timeout``.
        """
        if self._future is None:
            raise RuntimeError("Listener was not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), self.timeout)
        except asyncio.TimeoutError:
            self._settle(
                ListenerState.TIMED_OUT,
                error=AuthorizationFlowError(
                    f"No authorization callback within {self.timeout:g} seconds",
                    FlowFailure.TIMEOUT,
                ),
            )
            return await self._future
        finally:
            self.close()

    def close(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            server = self._server
            if server is not None:
                if self._thread is not None and self._thread is not threading.current_thread():
                    server.shutdown()
                server.server_close()
            if self._bound_port is not None:
                with _ports_lock:
                    _active_ports.discard(self._bound_port)
            if self._state is ListenerState.LISTENING:
                self._settle(
                    ListenerState.FAILED,
                    error=AuthorizationFlowError(
                        "Callback listener closed before authorization completed",
                        FlowFailure.LISTENER_ERROR,
                    ),
                )
        logger.debug("Callback listener on port %s closed", self.port)

    # --- request handling ---

    def handle_request_path(self, raw_path: str) -> tuple[int, str]:
        """Decide the response for one GET request and settle if it qualifies.

        Args:
            raw_path: The request target, e.g. ``/oauth/callback?code=abc``.

        Returns:
            ``(status, html_body)`` to send back to the browser.
        """
        split = urlsplit(raw_path)
        if split.path != self.path and "code=" not in split.query:
            return 404, _page(_WAITING_BODY)

        with self._lock:
            if self.settled:
                return 200, _page(_WAITING_BODY)

            try:
                params = parse_qs(split.query, keep_blank_values=True, errors="strict")
            except ValueError as exc:
                self._settle_locked(
                    ListenerState.FAILED,
                    error=AuthorizationFlowError(
                        f"Could not parse authorization callback: {exc}",
                        FlowFailure.CALLBACK_PARSE_ERROR,
                    ),
                )
                return 500, _page("Could not process the authorization callback.")

            code = params.get("code", [""])[0]
            error = params.get("error", [""])[0]
            if error:
                description = params.get("error_description", [""])[0]
                message = f"Authorization failed: {error}"
                if description:
                    message += f" - {description}"
                self._settle_locked(
                    ListenerState.FAILED,
                    error=AuthorizationFlowError(message, FlowFailure.AUTHORIZATION_DENIED),
                )
                return 400, _page(message)

            if self.expected_state is not None:
                state = params.get("state", [""])[0]
                if state != self.expected_state:
                    self._settle_locked(
                        ListenerState.FAILED,
                        error=AuthorizationFlowError(
                            "Authorization callback state does not match the request",
                            FlowFailure.STATE_MISMATCH,
                        ),
                    )
                    return 400, _page("Authorization failed: state mismatch.")

            if not code:
                self._settle_locked(
                    ListenerState.FAILED,
                    error=AuthorizationFlowError(
                        "No authorization code received from callback",
                        FlowFailure.MISSING_CODE,
                    ),
                )
                return 400, _page("No authorization code received.")

            self._settle_locked(ListenerState.COMPLETED, code=code)
            logger.info("Authorization code received: %s...", code[:8])
            return 200, _page(_SUCCESS_BODY)

    def _settle(
        self,
        state: ListenerState,
        code: Optional[str] = None,
        error: Optional[AuthorizationFlowError] = None,
    ) -> None:
        with self._lock:
            if not self.settled:
                self._settle_locked(state, code=code, error=error)

    def _settle_locked(
        self,
        state: ListenerState,
        code: Optional[str] = None,
        error: Optional[AuthorizationFlowError] = None,
    ) -> None:
        self._state = state
        self._code = code
        self._error = error
        if error is not None:
            logger.info("Authorization callback failed: %s", error.reason.value)
        if self._loop is None or self._future is None:
            return
        future = self._future

        def _deliver() -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
                # A listener closed before wait() has no awaiter; mark the
                # failure as retrieved. A later await still raises it.
                future.exception()
            else:
                future.set_result(code or "")

        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(_deliver)

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        listener = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                was_settled = listener.settled
                status, body = listener.handle_request_path(self.path)
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.end_headers()
                self.wfile.write(body.encode("utf-8"))
                if listener.settled and not was_settled:
                    # shutdown() blocks until serve_forever returns, so it
                    # cannot run on the serving thread.
                    threading.Thread(target=listener.close, daemon=True).start()

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback: " + format, *args)

        return CallbackHandler
