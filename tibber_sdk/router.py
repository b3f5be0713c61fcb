"""Demultiplexes inbound frames to home streams and fans them out to observers"""
import logging
import time
from typing import Callable, Iterable

from tibber_sdk import protocol
from tibber_sdk.models import RealTimeMeasurement
from tibber_sdk.registry import NEVER, HomeStreamEntry, SubscriptionRegistry

logger = logging.getLogger(__name__)


def notify_observers(observers: Iterable, action: Callable) -> None:
    """
    Invoke action on every observer.

    A failing observer is logged and skipped; it never affects its siblings or the caller.
    """
    for observer in observers:
        try:
            action(observer)
        except Exception as e:
            logger.error(f"Tibber API: Observer {observer!r} failed: {e}", exc_info=True)


class MessageRouter:
    """Routes parsed frames to registry entries. Runs on the single reader task."""

    def __init__(self, registry: SubscriptionRegistry, clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.clock = clock

    def route(self, text: str) -> None:
        """
        Dispatch one physical receive.

        Raises:
            ProtocolError: the text holds an unparseable frame.
        """
        messages = protocol.parse_messages(text)

        for stream_key, group in protocol.group_by_stream(messages).items():
            entry = self.registry.find_by_stream_key(stream_key)
            if entry is None:
                # Unsubscribed concurrently, or a connection level frame
                logger.debug(f"Tibber API: Dropping {len(group)} message(s) for unknown stream {stream_key}")
                continue

            entry.record_activity(self.clock())

            for message in group:
                if message.type == protocol.NEXT:
                    self._on_next(entry, message)
                elif message.type == protocol.COMPLETE:
                    # Terminal: nothing after it reaches the observers
                    self._on_complete(entry)
                    break
                elif message.type == protocol.ERROR:
                    self._on_error(entry, message)
                else:
                    logger.debug(f"Tibber API: Ignoring message type: {message.type}")

    def _on_next(self, entry: HomeStreamEntry, message: protocol.Message) -> None:
        entry.mark_initialized()

        errors = protocol.error_messages(message.payload)
        if errors:
            logger.warning(f"Tibber API: Home {entry.home_id} stream error: {'; '.join(errors)}")
            entry.record_error(errors[0])
            return

        payload = message.payload if isinstance(message.payload, dict) else {}
        data = payload.get("data") or {}
        live_measurement = data.get("liveMeasurement")
        if live_measurement is None:
            return

        measurement = RealTimeMeasurement.from_payload(live_measurement)
        notify_observers(self.registry.observers_of(entry), lambda o: o.on_next(measurement))

    def _on_complete(self, entry: HomeStreamEntry) -> None:
        logger.info(f"Tibber API: Server stopped the stream of home {entry.home_id}.")
        if self.registry.remove(entry):
            notify_observers(self.registry.observers_of(entry), lambda o: o.on_completed())

    def _on_error(self, entry: HomeStreamEntry, message: protocol.Message) -> None:
        errors = protocol.error_messages(message.payload) or ["unknown error"]
        logger.warning(f"Tibber API: Home {entry.home_id} subscription error: {'; '.join(errors)}")
        entry.record_error(errors[0])
        entry.release_confirmation()

    def fail_all(self, error: Exception) -> None:
        """Push a connection level failure to every observer and park every entry's liveness clock"""
        for entry in self.registry.snapshot_all():
            entry.last_message_at = NEVER
            notify_observers(self.registry.observers_of(entry), lambda o: o.on_error(error))
