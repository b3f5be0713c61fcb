"""Per-home bookkeeping of real-time subscriptions, and the handle callers observe"""
import asyncio
import itertools
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from tibber_sdk.errors import AlreadySubscribedError, DuplicateObserverError, ObjectDisposedError
from tibber_sdk.models import Observer, RealTimeMeasurement

logger = logging.getLogger(__name__)

# Last-activity sentinel: an entry stamped with it is never considered stale
NEVER = math.inf


@dataclass(eq=False)
class HomeStreamEntry:
    """
    Registry entry of one subscribed home.

    Attributes:
        home_id: Subscribed home.
        stream_key: Id correlating subscribe frames with inbound data frames.
        query: Subscription query text, re-sent on every resubscribe.
        initialized: True once the peer confirmed the subscription. Stays True across errors.
        error_message: Last error reported by the peer.
        last_message_at: Monotonic time of the last inbound frame, NEVER before the first one.
        reconnect_attempts: Resubscribe attempts since the last inbound frame.
        last_reconnect_at: Monotonic time of the last resubscribe attempt.
        reconnect_delay: Backoff drawn for the last attempt; the next one waits at least this long.
        observers: Registered observers, in registration order.
    """
    home_id: str
    stream_key: int
    query: str
    initialized: bool = False
    error_message: str | None = None
    last_message_at: float = NEVER
    reconnect_attempts: int = 0
    last_reconnect_at: float = -math.inf
    reconnect_delay: float = 0.0
    observers: list = field(default_factory=list)
    _confirmation: asyncio.Event | None = field(default=None, repr=False)

    def arm_confirmation(self) -> asyncio.Event:
        """
        One-shot signal for the subscribe frame about to be sent.

        A new signal is created unless one is still pending, in which case
        concurrent waiters on the same entry share it.
        """
        if self._confirmation is None:
            self._confirmation = asyncio.Event()
        return self._confirmation

    def release_confirmation(self) -> None:
        if self._confirmation is not None:
            self._confirmation.set()
            self._confirmation = None

    def record_activity(self, now: float) -> None:
        self.last_message_at = now
        self.reconnect_attempts = 0
        self.reconnect_delay = 0.0

    def mark_initialized(self) -> None:
        self.initialized = True
        self.release_confirmation()

    def record_error(self, message: str) -> None:
        self.error_message = message


class Unsubscriber:
    """Token returned by HomeStream.subscribe(); disposing it detaches just that observer."""

    def __init__(self, action: Callable[[], None]):
        self._action = action

    def dispose(self) -> None:
        action, self._action = self._action, None
        if action is not None:
            action()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()


class SubscriptionRegistry:
    """
    Thread-safe map of home id -> entry, with a stream key index for demultiplexing.

    One lock guards both maps, the observer lists and the closed flag.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_home: dict[str, HomeStreamEntry] = {}
        self._by_key: dict[int, HomeStreamEntry] = {}
        self._stream_keys = itertools.count(1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_home)

    def register(self, home_id: str, query: str) -> tuple[HomeStreamEntry, bool]:
        """
        Create the entry of a home.

        Returns:
            The entry and whether the registry was empty before this call.

        Raises:
            AlreadySubscribedError: the home already has an entry.
            ObjectDisposedError: the registry has been closed.
        """
        with self._lock:
            if self._closed:
                raise ObjectDisposedError("Real-time measurement listener has been closed")
            if home_id in self._by_home:
                raise AlreadySubscribedError(f"Home {home_id} is already subscribed")

            is_first = not self._by_home
            entry = HomeStreamEntry(home_id=home_id, stream_key=next(self._stream_keys), query=query)
            self._by_home[home_id] = entry
            self._by_key[entry.stream_key] = entry
            return entry, is_first

    def unregister(self, home_id: str) -> HomeStreamEntry | None:
        with self._lock:
            entry = self._by_home.pop(home_id, None)
            if entry is not None:
                del self._by_key[entry.stream_key]
            return entry

    def remove(self, entry: HomeStreamEntry) -> bool:
        """Remove this exact entry; False when it is no longer registered"""
        with self._lock:
            if self._by_home.get(entry.home_id) is not entry:
                return False
            del self._by_home[entry.home_id]
            del self._by_key[entry.stream_key]
            return True

    def get(self, home_id: str) -> HomeStreamEntry | None:
        with self._lock:
            return self._by_home.get(home_id)

    def find_by_stream_key(self, stream_key: int | None) -> HomeStreamEntry | None:
        with self._lock:
            return self._by_key.get(stream_key)

    def snapshot_all(self, predicate: Callable[[HomeStreamEntry], bool] | None = None) -> list[HomeStreamEntry]:
        with self._lock:
            return [e for e in self._by_home.values() if predicate is None or predicate(e)]

    def is_active(self, entry: HomeStreamEntry) -> bool:
        with self._lock:
            return self._by_home.get(entry.home_id) is entry

    def add_observer(self, entry: HomeStreamEntry, observer: Observer) -> None:
        with self._lock:
            if self._by_home.get(entry.home_id) is not entry:
                raise ObjectDisposedError(f"Home {entry.home_id} stream is no longer active")
            for other in self._by_home.values():
                if any(o is observer for o in other.observers):
                    raise DuplicateObserverError("Observer has been subscribed already")
            entry.observers.append(observer)

    def remove_observer(self, entry: HomeStreamEntry, observer: Observer) -> None:
        with self._lock:
            entry.observers = [o for o in entry.observers if o is not observer]

    def observers_of(self, entry: HomeStreamEntry) -> list:
        """Snapshot of the observers, safe to iterate while observers detach"""
        with self._lock:
            return list(entry.observers)

    def close(self) -> list[HomeStreamEntry] | None:
        """
        Mark the registry closed and clear it.

        Returns:
            The entries that were registered, or None when it was closed already.
        """
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            entries = list(self._by_home.values())
            self._by_home.clear()
            self._by_key.clear()
            return entries


class _QueueObserver:
    """Feeds HomeStream.measurements()"""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def on_next(self, measurement):
        self.queue.put_nowait((True, measurement))

    def on_error(self, error):
        logger.warning(f"Tibber API: Stream error: {error}")

    def on_completed(self):
        self.queue.put_nowait((False, None))


class HomeStream:
    """
    Observable live measurements of one home.

    Returned by the listener; attach observers with subscribe(), or iterate
    measurements() for an async generator.
    """

    def __init__(self, registry: SubscriptionRegistry, entry: HomeStreamEntry):
        self._registry = registry
        self._entry = entry

    def __repr__(self):
        return f"HomeStream(home_id={self.home_id!r}, stream_key={self.stream_key})"

    @property
    def home_id(self) -> str:
        return self._entry.home_id

    @property
    def stream_key(self) -> int:
        return self._entry.stream_key

    @property
    def initialized(self) -> bool:
        return self._entry.initialized

    @property
    def error_message(self) -> str | None:
        return self._entry.error_message

    @property
    def active(self) -> bool:
        return self._registry.is_active(self._entry)

    def subscribe(self, observer: Observer) -> Unsubscriber:
        """
        Register an observer.

        Raises:
            DuplicateObserverError: the observer is registered to any home stream already.
            ObjectDisposedError: the stream has ended.
        """
        self._registry.add_observer(self._entry, observer)
        return Unsubscriber(lambda: self._registry.remove_observer(self._entry, observer))

    async def measurements(self) -> AsyncIterator[RealTimeMeasurement]:
        """
        Yield measurements as they arrive, until the stream completes.

        Errors are transient and only logged here; subscribe an Observer to act on them.
        """
        queue = asyncio.Queue()
        with self.subscribe(_QueueObserver(queue)):
            while True:
                has_value, measurement = await queue.get()
                if not has_value:
                    return
                yield measurement
