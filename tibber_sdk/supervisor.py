"""Backoff policy, stall detection and transport reconnection"""
import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

from tibber_sdk.config import ListenerSettings
from tibber_sdk.registry import HomeStreamEntry, SubscriptionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def reconnect_delay(attempts: int, settings: ListenerSettings | None = None) -> float:
    """
    Seconds to wait before the next attempt.

    Random jitter spreads reconnects of many clients; the quadratic part grows
    with the number of failed attempts, capped at one day.
    """
    settings = settings or ListenerSettings()
    jitter = random.uniform(settings.jitter_min, settings.jitter_max)
    return jitter + min(attempts ** 2, settings.backoff_cap)


class ReconnectionSupervisor:
    """
    Decides when streams need a resubscribe and drives full reconnects.

    Args:
        settings: Listener timing
        backoff: attempts -> delay in seconds
        clock: Monotonic clock, shared with the router
    """

    def __init__(
        self,
        settings: ListenerSettings,
        backoff: Callable[[int], float] | None = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.settings = settings
        self.backoff = backoff or (lambda attempts: reconnect_delay(attempts, settings))
        self.clock = clock

    def is_due(self, entry: HomeStreamEntry, now: float) -> bool:
        """True when the entry is stalled and the delay drawn for its last attempt has passed"""
        if now - entry.last_message_at <= self.settings.stall_threshold:
            return False
        return now - entry.last_reconnect_at >= entry.reconnect_delay

    def collect_stalled(self, registry: SubscriptionRegistry) -> list[HomeStreamEntry]:
        """
        One liveness sweep.

        Every returned entry has its attempt counter incremented and its
        attempt time stamped; the caller resubscribes them. The delay before
        the next attempt is drawn here, once per attempt.
        """
        now = self.clock()
        stalled = registry.snapshot_all(lambda e: self.is_due(e, now))

        for entry in stalled:
            entry.reconnect_attempts += 1
            entry.last_reconnect_at = now
            entry.reconnect_delay = self.backoff(entry.reconnect_attempts)
            logger.warning(
                f"Tibber API: Home {entry.home_id} stream {entry.stream_key}: no data received during last "
                f"{now - entry.last_message_at:.0f}s; resubscribing (attempt {entry.reconnect_attempts})"
            )

        return stalled

    async def reconnect(
        self,
        open_session: Callable[[], Awaitable[T]],
        is_disposed: Callable[[], bool]
    ) -> T | None:
        """
        Retry open_session with backoff until it succeeds.

        Returns:
            The new session, or None when the listener was disposed meanwhile.
        """
        failures = 0

        while not is_disposed():
            delay = self.backoff(failures)
            logger.info(f"Tibber API: Reconnecting in {delay:.0f}s (failures: {failures})")
            await asyncio.sleep(delay)

            if is_disposed():
                break

            try:
                session = await open_session()
            except Exception as e:
                failures += 1
                logger.warning(f"Tibber API: Reconnect failed: {e}")
                continue

            logger.info("Tibber API: Connection re-established.")
            return session

        return None
