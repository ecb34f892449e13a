# src/wmrecorder/monitor/i3_source.py
"""
Event source backed by the i3 IPC socket.

The supervisor consumes a pull-style contract (connect, subscribe, next_event)
while i3ipc delivers events through callbacks from its main loop. Each
subscription therefore runs the i3ipc main loop on a listener thread that only
enqueues converted events; everything downstream stays on the caller's thread.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Mapping, Optional

from i3ipc import Connection, Event

from wmrecorder.errors import ConnectError, SubscribeError, TransportError
from wmrecorder.monitor.events import OtherEvent, RawEvent, Rect, SourceEvent

logger = logging.getLogger(__name__)

LISTENER_JOIN_TIMEOUT = 2.0


class Subscription:
    """One connection epoch. Not restartable: reconnect through the source."""

    def subscribe(self) -> None: ...
    def next_event(self, timeout: Optional[float] = None) -> Optional[SourceEvent]: ...
    def probe(self) -> None: ...
    def close(self) -> None: ...


class EventSource:
    def connect(self) -> Subscription: ...


class _Closed:
    def __init__(self, error: Optional[BaseException] = None):
        self.error = error


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def raw_event_from_i3(event: Any) -> RawEvent:
    """Convert an i3ipc WindowEvent into a RawEvent using its raw IPC payload."""
    data: Mapping[str, Any] = getattr(event, "ipc_data", None) or {}
    container: Mapping[str, Any] = data.get("container") or {}
    rect: Mapping[str, Any] = container.get("window_rect") or {}

    return RawEvent(
        change_kind=getattr(event, "change", None) or data.get("change") or "unknown",
        window_name=container.get("name"),
        window_class_properties=container.get("window_properties"),
        window_rect=Rect(
            x=_to_int(rect.get("x")),
            y=_to_int(rect.get("y")),
            width=_to_int(rect.get("width")),
            height=_to_int(rect.get("height")),
        ),
    )


class I3Subscription(Subscription):
    def __init__(self, conn: Connection):
        self._conn = conn
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    # i3ipc callbacks, run on the listener thread
    def _on_window(self, _conn: Connection, event: Any) -> None:
        self._queue.put(raw_event_from_i3(event))

    def _on_shutdown(self, _conn: Connection, event: Any) -> None:
        logger.info("i3 is shutting down (%s)", getattr(event, "change", "exit"))
        self._queue.put(OtherEvent(category="shutdown"))

    def _listen(self) -> None:
        error: Optional[BaseException] = None
        try:
            self._conn.main()
        except Exception as exc:
            error = exc
        self._queue.put(_Closed(error))

    def subscribe(self) -> None:
        try:
            self._conn.on(Event.WINDOW, self._on_window)
            self._conn.on(Event.SHUTDOWN, self._on_shutdown)
            self._thread = threading.Thread(target=self._listen, name="i3-listener", daemon=True)
            self._thread.start()
        except Exception as exc:
            raise SubscribeError(f"failed to subscribe to i3 window events: {exc}") from exc

    def next_event(self, timeout: Optional[float] = None) -> Optional[SourceEvent]:
        """Block for the next event. Returns None if `timeout` elapses first."""
        if self._closed:
            raise TransportError("subscription is closed")
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

        if isinstance(item, _Closed):
            self._closed = True
            if item.error is not None:
                raise TransportError(f"i3 event loop failed: {item.error}") from item.error
            raise TransportError("i3 closed the event socket")
        return item

    def probe(self) -> None:
        try:
            self._conn.get_version()
        except Exception as exc:
            raise TransportError(f"i3 did not answer a version request: {exc}") from exc

    def close(self) -> None:
        self._closed = True
        try:
            self._conn.main_quit()
        except Exception as exc:
            logger.debug("Ignoring error while stopping i3 event loop: %s", exc)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=LISTENER_JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.debug("i3 listener thread did not stop within %.1fs", LISTENER_JOIN_TIMEOUT)
        self._thread = None

        # main_quit() only shuts the event socket; i3ipc has no public close
        # for the command socket opened in Connection.__init__
        cmd_socket = getattr(self._conn, "_cmd_socket", None)
        if cmd_socket is not None:
            try:
                cmd_socket.close()
            except OSError as exc:
                logger.debug("Ignoring error while closing i3 command socket: %s", exc)


class I3EventSource(EventSource):
    def __init__(self, socket_path: Optional[str] = None):
        self.socket_path = socket_path

    def connect(self) -> I3Subscription:
        try:
            conn = Connection(socket_path=self.socket_path, auto_reconnect=False)
        except Exception as exc:
            raise ConnectError(f"cannot connect to i3 IPC socket: {exc}") from exc
        return I3Subscription(conn)
