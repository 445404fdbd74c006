"""
Push-based live queries.

Every committed write publishes the topics it touched to a ``ChangeHub``. A
``LiveQuery`` recomputes its full snapshot whenever one of its topics changes and
hands the new snapshot to its listeners. Listeners must treat each snapshot as a
full-state replacement. A change that does not alter the result is not re-emitted,
and a recompute that finishes after a newer one has been delivered is dropped.
"""
import logging
import threading
from typing import Callable, Dict, Generic, Iterable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROUTES = "routes"
BUSES = "buses"
SESSIONS = "sessions"
ALL_TOPICS = (ROUTES, BUSES, SESSIONS)


class Subscription:
    """Handle returned by every subscribe call. ``cancel()`` is idempotent."""

    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self.active = True

    def cancel(self) -> None:
        with self._lock:
            if not self.active:
                return
            self.active = False
        self._on_cancel()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.cancel()


class ChangeHub:
    """
    Fan-out of change notifications.
    topic -> set of callbacks
    """

    def __init__(self):
        self._listeners: Dict[str, Set[Callable[[], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topics: Iterable[str], callback: Callable[[], None]) -> Subscription:
        topics = tuple(topics)
        with self._lock:
            for topic in topics:
                self._listeners.setdefault(topic, set()).add(callback)

        def _remove():
            with self._lock:
                for topic in topics:
                    listeners = self._listeners.get(topic)
                    if listeners is None:
                        continue
                    listeners.discard(callback)
                    if not listeners:
                        del self._listeners[topic]

        return Subscription(_remove)

    def publish(self, topics: Iterable[str]) -> None:
        # A callback registered on several topics still fires once per publish
        with self._lock:
            callbacks = []
            for topic in topics:
                for callback in self._listeners.get(topic, ()):
                    if callback not in callbacks:
                        callbacks.append(callback)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Live listener failed")

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._listeners.get(topic, ()))


class LiveQuery(Generic[T]):
    """A lazily evaluated query whose result is pushed to subscribers on change."""

    def __init__(self, hub: ChangeHub, topics: Iterable[str], compute: Callable[[], T], name: str = "query"):
        self.hub = hub
        self.topics = tuple(topics)
        self.name = name
        self._compute = compute

    def current(self) -> T:
        """Compute the snapshot once, without subscribing."""
        return self._compute()

    def subscribe(
        self,
        listener: Callable[[T], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        schedule: Optional[Callable[[Callable[[], None]], None]] = None,
    ) -> Subscription:
        """
        Emit the current snapshot to ``listener`` right away, then again after every
        change that alters it. Errors raised while recomputing go to ``on_error``;
        without one they are logged and the subscription stays open.

        ``schedule`` receives each recompute triggered by a change instead of it running
        on the publishing thread. The initial emission always runs on the caller.
        """
        state = {"last": None, "emitted": False, "issued": 0, "delivered": 0}
        lock = threading.RLock()

        def _refresh():
            with lock:
                state["issued"] += 1
                ticket = state["issued"]
            try:
                snapshot = self._compute()
            except Exception as exc:
                if on_error is None:
                    logger.exception("Live query %s failed to recompute", self.name)
                else:
                    on_error(exc)
                return
            with lock:
                # A recompute that started later has already been delivered
                if ticket < state["delivered"]:
                    return
                state["delivered"] = ticket
                if state["emitted"] and snapshot == state["last"]:
                    return
                state["last"] = snapshot
                state["emitted"] = True
                listener(snapshot)

        if schedule is None:
            callback = _refresh
        else:
            def callback():
                schedule(_refresh)

        subscription = self.hub.subscribe(self.topics, callback)
        _refresh()
        return subscription
