"""Reactive queries that push fresh results to subscribers after every write."""

from __future__ import annotations

import functools
import logging
import queue
import threading
import time
from concurrent.futures import Executor
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
)

from ..errors import SubscriptionClosed


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


# ---------------------------------------------------------------------------
# Table invalidation
# ---------------------------------------------------------------------------


class InvalidationTracker:
    """Fan table-change notifications out to the observers watching them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: Dict[int, Tuple[FrozenSet[str], Callable[[str], None]]] = {}
        self._next_handle = 1

    def add_observer(self, tables: Iterable[str], callback: Callable[[str], None]) -> int:
        watched = frozenset(tables)
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._observers[handle] = (watched, callback)
        LOGGER.debug("Observer %s watching tables %s", handle, sorted(watched))
        return handle

    def remove_observer(self, handle: int) -> None:
        with self._lock:
            self._observers.pop(handle, None)
        LOGGER.debug("Observer %s removed", handle)

    def notify(self, table: str) -> None:
        with self._lock:
            targets = [
                callback for watched, callback in self._observers.values() if table in watched
            ]
        LOGGER.debug("Invalidating %s observer(s) of table '%s'", len(targets), table)
        for callback in targets:
            try:
                callback(table)
            except Exception:  # noqa: BLE001 - one observer must not starve the rest
                LOGGER.exception("Invalidation observer for table '%s' raised", table)


# ---------------------------------------------------------------------------
# Delivery onto the UI-owning thread
# ---------------------------------------------------------------------------


class Dispatcher(Protocol):
    def post(self, callback: Callable[[], None]) -> None:
        ...

    def is_ui_thread(self) -> bool:
        ...


class ImmediateDispatcher:
    """Run posted callbacks inline on whichever thread posted them."""

    def post(self, callback: Callable[[], None]) -> None:
        callback()

    def is_ui_thread(self) -> bool:
        return False


class QueueDispatcher:
    """Queue callbacks for the thread that owns the user interface.

    The owning thread is the one that created the dispatcher. It drains the
    queue with :meth:`run_pending` or :meth:`run_until`; any other thread may
    post.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._owner = threading.get_ident()

    def post(self, callback: Callable[[], None]) -> None:
        self._queue.put(callback)

    def is_ui_thread(self) -> bool:
        return threading.get_ident() == self._owner

    def _ensure_owner(self) -> None:
        if not self.is_ui_thread():
            raise RuntimeError("Dispatcher queue can only be drained by its owning thread")

    def _run(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:  # noqa: BLE001 - keep the UI loop alive
            LOGGER.exception("Dispatched callback raised")

    def run_pending(self) -> int:
        """Run every callback queued so far and return how many ran."""

        self._ensure_owner()
        executed = 0
        while True:
            try:
                callback = self._queue.get_nowait()
            except queue.Empty:
                return executed
            self._run(callback)
            executed += 1

    def run_until(self, predicate: Callable[[], bool], timeout: Optional[float] = 5.0) -> bool:
        """Process callbacks until *predicate* holds or *timeout* elapses."""

        self._ensure_owner()
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.run_pending()
            if predicate():
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return predicate()
            try:
                callback = self._queue.get(timeout=remaining)
            except queue.Empty:
                return predicate()
            self._run(callback)


# ---------------------------------------------------------------------------
# Queries and subscriptions
# ---------------------------------------------------------------------------


class Subscription(Generic[T]):
    """Receiving end of a live query.

    Values are pushed in computation order. Without a callback they are
    buffered and can be consumed with :meth:`get` or by iterating, which
    blocks until the next value arrives and stops once cancelled.
    """

    def __init__(self, query: "LiveQuery[T]", callback: Optional[Callable[[T], None]] = None) -> None:
        self._query = query
        self._callback = callback
        self._lock = threading.RLock()
        self._buffer: "queue.Queue[Any]" = queue.Queue()
        self._cancelled = threading.Event()
        self._last_version = -1
        self._latest: Optional[T] = None
        self._received = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def latest(self) -> Optional[T]:
        """The most recently delivered value, or ``None`` before the first one."""

        return self._latest

    @property
    def has_value(self) -> bool:
        return self._received.is_set()

    def _deliver(self, version: int, value: T) -> None:
        with self._lock:
            if self.cancelled or version <= self._last_version:
                return
            self._last_version = version
            self._latest = value
            self._received.set()
            if self._callback is None:
                self._buffer.put(value)
                return
            try:
                self._callback(value)
            except Exception:  # noqa: BLE001 - the subscription stays alive
                LOGGER.exception("Subscriber of %s raised while handling a value", self._query.name)

    def get(self, timeout: Optional[float] = None) -> T:
        """Return the next buffered value.

        Raises :class:`TimeoutError` when nothing arrives in time and
        :class:`SubscriptionClosed` once the subscription is cancelled.
        """

        try:
            item = self._buffer.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"No value from {self._query.name} within {timeout}s") from None
        if item is _CLOSED:
            self._buffer.put(_CLOSED)
            raise SubscriptionClosed(f"Subscription to {self._query.name} was cancelled")
        return item

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.get()
            except SubscriptionClosed:
                return

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        with self._lock:
            self._cancelled.set()
        self._buffer.put(_CLOSED)
        self._query._detach(self)

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class LiveQuery(Generic[T]):
    """A store read that is recomputed whenever one of its tables changes.

    Computation runs on *executor*, so reads queue behind the writes that were
    submitted before them. Results reach subscribers through *dispatcher*.
    """

    def __init__(
        self,
        compute: Callable[[], T],
        *,
        tables: Iterable[str],
        tracker: InvalidationTracker,
        executor: Executor,
        dispatcher: Dispatcher,
        name: str = "query",
    ) -> None:
        self._compute = compute
        self._tables = frozenset(tables)
        self._tracker = tracker
        self._executor = executor
        self._dispatcher = dispatcher
        self.name = name
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription[T]] = []
        self._observer: Optional[int] = None
        self._version = 0
        self._cached: Optional[Tuple[int, T]] = None

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, callback: Optional[Callable[[T], None]] = None) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
            if self._observer is None:
                self._observer = self._tracker.add_observer(self._tables, self._on_invalidated)
            cached = self._cached
        LOGGER.debug("New subscriber for %s (cached=%s)", self.name, cached is not None)
        if cached is not None:
            version, value = cached
            self._dispatcher.post(functools.partial(subscription._deliver, version, value))
        else:
            self._schedule_refresh()
        return subscription

    def first(self, timeout: Optional[float] = 5.0) -> T:
        """Return the current value once, without keeping a subscription."""

        received = threading.Event()
        holder: List[T] = []

        def _capture(value: T) -> None:
            if not holder:
                holder.append(value)
                received.set()

        with self.subscribe(_capture):
            if isinstance(self._dispatcher, QueueDispatcher) and self._dispatcher.is_ui_thread():
                ready = self._dispatcher.run_until(received.is_set, timeout)
            else:
                ready = received.wait(timeout)
        if not ready:
            raise TimeoutError(f"No value from {self.name} within {timeout}s")
        return holder[0]

    def _detach(self, subscription: Subscription[T]) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            if self._subscriptions or self._observer is None:
                return
            handle = self._observer
            self._observer = None
            # Writes are no longer observed, so the cached value may go stale.
            self._cached = None
        self._tracker.remove_observer(handle)
        LOGGER.debug("Last subscriber of %s left; stopped observing", self.name)

    def _on_invalidated(self, table: str) -> None:
        LOGGER.debug("%s invalidated by change to '%s'", self.name, table)
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        try:
            self._executor.submit(self._refresh)
        except RuntimeError:
            LOGGER.warning("Cannot refresh %s: worker has been shut down", self.name)

    def _refresh(self) -> None:
        try:
            value = self._compute()
        except Exception:  # noqa: BLE001 - a failed tick delivers nothing
            LOGGER.exception("Live query %s failed to compute", self.name)
            return
        with self._lock:
            self._version += 1
            version = self._version
            if self._subscriptions:
                self._cached = (version, value)
            targets = list(self._subscriptions)
        LOGGER.debug("%s computed version %s for %s subscriber(s)", self.name, version, len(targets))
        for subscription in targets:
            self._dispatcher.post(functools.partial(subscription._deliver, version, value))


__all__ = [
    "Dispatcher",
    "ImmediateDispatcher",
    "InvalidationTracker",
    "LiveQuery",
    "QueueDispatcher",
    "Subscription",
]
