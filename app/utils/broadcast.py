"""Best-effort status event fan-out.

Listeners are plain callables or coroutine functions taking a
:class:`StatusEvent`. Emitting never waits on a listener: coroutine listeners
are scheduled on the running loop and their results are not awaited, and a
listener that raises is logged and left subscribed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from app.utils.dates import iso_timestamp

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "success", "error")

Listener = Callable[["StatusEvent"], Any]


@dataclass(slots=True, frozen=True)
class StatusEvent:
    type: str
    message: str
    timestamp: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


class StatusBroadcaster:
    def __init__(self, *, clock: Callable[[], str] = iso_timestamp) -> None:
        self._clock = clock
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()
        self._lock = threading.Lock()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, type: str, message: str) -> StatusEvent:
        if type not in SEVERITIES:
            raise ValueError(f"Unknown status type: {type}")
        event = StatusEvent(type=type, message=message, timestamp=self._clock())
        log = logger.error if type == "error" else logger.info
        log("[%s] %s", type, message)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._deliver(listener, event)
        return event

    def info(self, message: str) -> StatusEvent:
        return self.emit("info", message)

    def success(self, message: str) -> StatusEvent:
        return self.emit("success", message)

    def error(self, message: str) -> StatusEvent:
        return self.emit("error", message)

    def _deliver(self, listener: Listener, event: StatusEvent) -> None:
        try:
            result = listener(event)
        except Exception as exc:
            logger.warning("Status listener %r failed: %s", listener, exc)
            return
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop in this thread (e.g. inside an executor); the event is dropped for this listener.
            if inspect.iscoroutine(result):
                result.close()
            return
        task = loop.create_task(result)
        self._pending.add(task)
        task.add_done_callback(self._finish)

    def _finish(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Async status listener failed: %s", task.exception())


_broadcaster: StatusBroadcaster | None = None
_init_lock = threading.Lock()


def init_broadcaster() -> StatusBroadcaster:
    """Create the process-wide broadcaster on first call; later calls return it."""
    global _broadcaster
    with _init_lock:
        if _broadcaster is None:
            _broadcaster = StatusBroadcaster()
        return _broadcaster


def get_broadcaster() -> StatusBroadcaster:
    return init_broadcaster()
