"""Real-time measurement listener - many home streams multiplexed over one WebSocket"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from tibber_sdk import protocol
from tibber_sdk.config import CONFIRMATION_TIMEOUT, USER_AGENT, ListenerSettings
from tibber_sdk.errors import ObjectDisposedError, SubscriptionInitializationError, TransportError
from tibber_sdk.queries import build_subscription_payload
from tibber_sdk.registry import HomeStream, HomeStreamEntry, SubscriptionRegistry
from tibber_sdk.router import MessageRouter, notify_observers
from tibber_sdk.supervisor import ReconnectionSupervisor
from tibber_sdk.transport import TransportSession

logger = logging.getLogger(__name__)


class RealTimeMeasurementListener:
    """
    Subscribes homes to the liveMeasurement stream.

    The first subscription bootstraps the WebSocket session, starts the
    receive loop and arms the liveness sweep. The session stays open until
    close(), even when every home has been unsubscribed.

    Args:
        token: Tibber API token
        endpoint_provider: Coroutine function returning the subscription URL;
            called before the first connect and before every reconnect
        user_agent: Client identifier sent in connection_init
        settings: Listener timing
        transport_factory: Returns a new, unconnected transport session
        backoff: attempts -> delay in seconds, for reconnects and resubscribes
        clock: Monotonic clock
    """

    def __init__(
        self,
        token: str,
        endpoint_provider: Callable[[], Awaitable[str]],
        user_agent: str = USER_AGENT,
        settings: ListenerSettings | None = None,
        transport_factory: Callable[[], TransportSession] | None = None,
        backoff: Callable[[int], float] | None = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.token = token
        self.endpoint_provider = endpoint_provider
        self.user_agent = user_agent
        self.settings = settings or ListenerSettings()
        self.transport_factory = transport_factory or (lambda: TransportSession(user_agent=user_agent))
        self.clock = clock

        self.registry = SubscriptionRegistry()
        self.router = MessageRouter(self.registry, clock)
        self.supervisor = ReconnectionSupervisor(self.settings, backoff, clock)

        # Serializes subscribe/unsubscribe so first/last decisions are race-free
        self._lifecycle_lock = asyncio.Semaphore(1)
        self._transport = None
        self._receive_task = None
        self._liveness_task = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self.registry.closed

    @property
    def transport(self):
        return self._transport

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _check_not_closed(self) -> None:
        if self.registry.closed:
            raise ObjectDisposedError("Real-time measurement listener has been closed")

    async def subscribe_home(
        self,
        home_id: str,
        fields: Iterable[str] | None = None,
        timeout: float | None = CONFIRMATION_TIMEOUT
    ) -> HomeStream:
        """
        Start the live measurement stream of a home.

        Args:
            home_id: Tibber home id
            fields: liveMeasurement fields to select; None selects all
            timeout: Seconds to wait for the peer to confirm; None waits until cancelled

        Returns:
            HomeStream to attach observers to

        Raises:
            AlreadySubscribedError: the home is subscribed already
            SubscriptionInitializationError: the peer rejected or never confirmed the subscription
            WebSocketConnectionError / TransportError: the session could not be used
            ObjectDisposedError: the listener has been closed

        Cancelling the caller abandons the wait but keeps the subscription registered.
        """
        self._check_not_closed()
        query = build_subscription_payload(home_id, fields)

        async with self._lifecycle_lock:
            self._check_not_closed()
            entry, is_first = self.registry.register(home_id, query)

            try:
                # A session left open by earlier, now unsubscribed homes is reused
                if is_first and self._transport is None:
                    logger.info(f"Tibber API: First subscription (home {home_id}); starting session")
                    await self._start()

                confirmation = entry.arm_confirmation()
                await self._transport.send(protocol.subscribe_frame(entry.stream_key, query))
            except BaseException:
                self.registry.remove(entry)
                raise

            logger.info(f"Tibber API: Subscription {entry.stream_key} for home {home_id} sent. Waiting for data...")

            try:
                if timeout is None:
                    await confirmation.wait()
                else:
                    await asyncio.wait_for(confirmation.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Tibber API: Home {home_id} subscription not confirmed within {timeout}s")

            self._check_not_closed()

            if not entry.initialized:
                self.registry.remove(entry)
                # An 'error' frame ends the operation on the peer; a silent one is still open there
                if entry.error_message is None:
                    try:
                        await self._transport.send(protocol.unsubscribe_frame(entry.stream_key))
                    except TransportError as e:
                        logger.warning(f"Tibber API: Unsubscribe of home {home_id} not sent: {e}")
                raise SubscriptionInitializationError(home_id, entry.error_message)

        return HomeStream(self.registry, entry)

    async def unsubscribe_home(self, home_id: str) -> None:
        """
        Stop the stream of a home; its observers get on_completed.

        No-op when the home is not subscribed. Does not wait for the peer.
        """
        self._check_not_closed()

        async with self._lifecycle_lock:
            self._check_not_closed()

            entry = self.registry.unregister(home_id)
            if entry is None:
                return

            notify_observers(self.registry.observers_of(entry), lambda o: o.on_completed())

            if self._transport is not None:
                try:
                    await self._transport.send(protocol.unsubscribe_frame(entry.stream_key))
                except TransportError as e:
                    logger.warning(f"Tibber API: Unsubscribe of home {home_id} not sent: {e}")

        logger.info(f"Tibber API: Home {home_id} unsubscribed.")

    async def close(self) -> None:
        """
        Dispose the listener. Idempotent and never raises.

        Every remaining observer gets on_completed exactly once.
        """
        entries = self.registry.close()
        if entries is None:
            return

        logger.info("Tibber API: Listener disposal started.")

        observers = []
        for entry in entries:
            entry.release_confirmation()
            observers.extend(self.registry.observers_of(entry))

        current = asyncio.current_task()
        tasks = [
            t for t in (self._receive_task, self._liveness_task, *self._tasks)
            if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()

        notify_observers(observers, lambda o: o.on_completed())

        if self._transport is not None:
            await self._transport.close()

        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Tibber API: Listener disposal finished.")

    async def _open_session(self):
        url = await self.endpoint_provider()
        transport = self.transport_factory()
        await transport.connect(url, self.token)
        return transport

    async def _start(self) -> None:
        transport = await self._open_session()

        # close() may have run while connecting; it saw no transport to release
        if self.registry.closed:
            await transport.close()
            raise ObjectDisposedError("Real-time measurement listener has been closed")

        self._transport = transport

        self._receive_task = asyncio.create_task(self._receive_loop(), name="tibber-receive")
        self._receive_task.add_done_callback(self._on_receive_done)
        self._liveness_task = asyncio.create_task(self._watch_liveness(), name="tibber-liveness")

    def _on_receive_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Tibber API: Receive loop crashed: {task.exception()!r}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _receive_loop(self) -> None:
        while not self.registry.closed:
            try:
                text = await self._transport.receive_message()
                self.router.route(text)
            except asyncio.CancelledError:
                logger.debug("Tibber API: Receive loop cancelled.")
                raise
            except Exception as e:
                if self.registry.closed:
                    return

                self.router.fail_all(e)

                if isinstance(e, TransportError):
                    logger.warning(f"Tibber API: Connection lost: {e}")
                    if await self._reconnect():
                        continue
                else:
                    logger.error(f"Tibber API: Unrecoverable stream failure: {e!r}")

                await self.close()
                return

    async def _reconnect(self) -> bool:
        # At most one physical connection at a time
        await self._transport.close()

        transport = await self.supervisor.reconnect(self._open_session, lambda: self.registry.closed)
        if transport is None:
            return False

        if self.registry.closed:
            await transport.close()
            return False

        self._transport = transport
        logger.info("Tibber API: Connection re-established; re-initialize data streams")
        self._spawn(self._resubscribe_all())
        return True

    async def _resubscribe_all(self) -> None:
        now = self.clock()
        for entry in self.registry.snapshot_all():
            entry.last_message_at = now
            await self._resubscribe(entry)

    async def _resubscribe(self, entry: HomeStreamEntry, unsubscribe_first: bool = False) -> None:
        if not self.registry.is_active(entry):
            return

        confirmation = entry.arm_confirmation()
        try:
            if unsubscribe_first:
                await self._transport.send(protocol.unsubscribe_frame(entry.stream_key))
            await self._transport.send(protocol.subscribe_frame(entry.stream_key, entry.query))
        except TransportError as e:
            logger.warning(f"Tibber API: Resubscribe of home {entry.home_id} not sent: {e}")
            return

        try:
            await asyncio.wait_for(confirmation.wait(), self.settings.confirmation_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Tibber API: Home {entry.home_id} resubscription not confirmed within "
                f"{self.settings.confirmation_timeout}s"
            )

    async def _watch_liveness(self) -> None:
        """Resubscribe streams that went silent"""
        await asyncio.sleep(self.settings.liveness_warmup)

        while not self.registry.closed:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Tibber API: Liveness sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self.settings.liveness_interval)

    async def sweep(self) -> list[HomeStreamEntry]:
        """
        Run one liveness sweep now.

        Returns:
            The entries that were resubscribed
        """
        stalled = self.supervisor.collect_stalled(self.registry)
        for entry in stalled:
            await self._resubscribe(entry, unsubscribe_first=True)
        return stalled
