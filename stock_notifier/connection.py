"""Streaming connection to the live stock feed.

Wraps a ``websocket.WebSocketApp`` running on a daemon thread.  A lost
link is retried after ``base_delay * attempt`` seconds, up to
``max_attempts`` times; after that only a fresh ``connect()`` (or a
process restart) brings the stream back and the fallback poller
carries the load.
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

from websocket import WebSocketApp

from .stock import Snapshot, TRACKED_CATEGORIES, parse_snapshot
from .utils import ConfigurationError, MalformedSnapshotError

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def build_feed_url(ws_url: str, user_id: str) -> str:
    sep = "&" if "?" in ws_url else "?"
    return f"{ws_url}{sep}{urlencode({'user_id': user_id})}"


def stock_changed(new: Snapshot, old: Optional[Snapshot]) -> bool:
    """True when any tracked category differs, ignoring item order."""
    if old is None:
        return True
    return any(new.signature(cat) != old.signature(cat) for cat in TRACKED_CATEGORIES)


class ConnectionManager:
    """Owns one websocket link and its reconnect policy.

    Handlers are fixed at construction.  ``on_snapshot`` receives every
    parsed snapshot that differs from the previous one; ``on_connect``
    and ``on_disconnect`` receive connectivity transitions.
    """

    def __init__(
        self,
        url: str,
        on_snapshot: Callable[[Snapshot], Any],
        *,
        on_connect: Optional[Callable[[], Any]] = None,
        on_disconnect: Optional[Callable[[], Any]] = None,
        base_delay: float = 5.0,
        max_attempts: int = 5,
        app_factory: Callable[..., Any] = WebSocketApp,
        timer_factory: Callable[..., Any] = threading.Timer,
        run_kwargs: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not url:
            raise ConfigurationError("Connection manager needs a feed URL")
        if on_snapshot is None:
            raise ConfigurationError("Connection manager needs a snapshot handler")
        self.url = url
        self._on_snapshot = on_snapshot
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._app_factory = app_factory
        self._timer_factory = timer_factory
        self._run_kwargs = run_kwargs if run_kwargs is not None else {"ping_interval": 20, "ping_timeout": 10}

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._ws: Any = None
        self._timer: Any = None
        self._stopped = False
        self._last_snapshot: Optional[Snapshot] = None

    # ---- public API ----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    def connect(self) -> None:
        """Open the link on a background thread.

        After the reconnect budget has run out, a call here starts a
        fresh one.
        """
        with self._lock:
            self._stopped = False
            if self._state is ConnectionState.DISCONNECTED and self._attempts >= self.max_attempts:
                self._attempts = 0
            ws = self._open()
        if ws is not None:
            self._start(ws)

    def disconnect(self) -> None:
        """Stop reconnecting and close the link if open. Safe to call twice."""
        with self._lock:
            self._stopped = True
            self._cancel_timer()
            ws, self._ws = self._ws, None
            was = self._state
            self._state = ConnectionState.DISCONNECTED
        if ws is not None:
            try:
                ws.close()
            except Exception:
                logger.debug("Error while closing WebSocket", exc_info=True)
        if was is not ConnectionState.DISCONNECTED:
            logger.info("WebSocket disconnected on request")
            self._emit(self._on_disconnect)

    def is_active(self) -> bool:
        """Connected, and the underlying socket is actually up."""
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            return False
        sock = getattr(ws, "sock", None)
        return bool(sock is not None and getattr(sock, "connected", False))

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "active": self.is_active(),
            "reconnect_attempts": self._attempts,
            "max_reconnect_attempts": self.max_attempts,
            "has_snapshot": self._last_snapshot is not None,
        }

    # ---- websocket callbacks --------------------------------------------------

    def _open(self) -> Any:
        # caller holds self._lock
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug("connect() ignored in state %s", self._state.value)
            return None
        self._cancel_timer()
        self._state = ConnectionState.CONNECTING
        logger.info("Attempting WebSocket connection to %s", self.url)
        try:
            ws = self._app_factory(
                self.url,
                on_open=self._handle_open,
                on_message=self._handle_message,
                on_error=self._handle_error,
                on_close=self._handle_close,
            )
        except Exception:
            logger.exception("Error creating WebSocket connection")
            self._state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()
            return None
        self._ws = ws
        return ws

    def _start(self, ws: Any) -> None:
        thread = threading.Thread(target=self._run, args=(ws,), name="feed-stream", daemon=True)
        thread.start()

    def _run(self, ws: Any) -> None:
        try:
            ws.run_forever(**self._run_kwargs)
        except Exception:
            logger.exception("WebSocket loop crashed")
        # run_forever returns once the link is gone; on_close may not have fired.
        self._link_down(ws)

    def _handle_open(self, ws: Any) -> None:
        with self._lock:
            stale = ws is not self._ws
            if not stale:
                self._state = ConnectionState.CONNECTED
                self._attempts = 0
        if stale:
            # disconnect() won the race against this link
            try:
                ws.close()
            except Exception:
                logger.debug("Error while closing stale WebSocket", exc_info=True)
            return
        logger.info("WebSocket connection established.")
        self._emit(self._on_connect)

    def _handle_message(self, ws: Any, message: Any) -> None:
        try:
            snapshot = parse_snapshot(message)
        except MalformedSnapshotError as e:
            logger.warning("Dropping malformed feed message: %s", e)
            return
        if not stock_changed(snapshot, self._last_snapshot):
            logger.debug("Feed resent unchanged stock; ignoring")
            return
        self._last_snapshot = snapshot
        logger.info("Stock update received via WebSocket")
        try:
            self._on_snapshot(snapshot)
        except Exception:
            logger.exception("Snapshot handler failed")

    def _handle_error(self, ws: Any, error: Any) -> None:
        logger.error("WebSocket error: %s", error)
        with self._lock:
            if ws is self._ws:
                self._state = ConnectionState.DISCONNECTED

    def _handle_close(self, ws: Any, code: Any = None, reason: Any = None) -> None:
        logger.info("WebSocket connection closed. Code: %s, Reason: %s", code, reason)
        self._link_down(ws)

    # ---- reconnect -------------------------------------------------------------

    def _link_down(self, ws: Any) -> None:
        with self._lock:
            if ws is not self._ws:
                return  # stale link, or disconnect() already handled it
            self._ws = None
            self._state = ConnectionState.DISCONNECTED
            if not self._stopped:
                self._schedule_reconnect()
        self._emit(self._on_disconnect)

    def _schedule_reconnect(self) -> None:
        # caller holds self._lock
        if self._attempts >= self.max_attempts:
            logger.error("Max reconnection attempts (%d) reached. Stopping reconnection.", self.max_attempts)
            return
        self._attempts += 1
        delay = self.base_delay * self._attempts
        logger.info("Reconnecting in %.1fs (%d/%d)", delay, self._attempts, self.max_attempts)
        timer = self._timer_factory(delay, self._reconnect)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._timer = None
            if self._stopped:
                return
            ws = self._open()
        if ws is not None:
            self._start(ws)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @staticmethod
    def _emit(handler: Optional[Callable[[], Any]]) -> None:
        if handler is None:
            return
        try:
            handler()
        except Exception:
            logger.exception("Connectivity handler failed")


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "build_feed_url",
    "stock_changed",
]
