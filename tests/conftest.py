import asyncio
import json

import pytest
from pytest_socket import disable_socket

from tibber_sdk.config import ListenerSettings
from tibber_sdk.errors import TransportError, WebSocketConnectionError
from tibber_sdk.listener import RealTimeMeasurementListener


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, DNS, etc) will immediately raise a SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)


def next_frame(stream_key, measurement=None, errors=None):
    """Inbound 'next' frame; measurement None confirms without delivering a reading"""
    payload = {"data": {"liveMeasurement": measurement}}
    if errors:
        payload["errors"] = [{"message": m} for m in errors]
    return json.dumps({"id": stream_key, "type": "next", "payload": payload})


class FakeTransport:
    """
    In-memory stand-in for TransportSession.

    Inbound frames (or exceptions to raise) are queued with push(). With
    auto_confirm, every subscribe frame is answered with an empty 'next'.
    """

    def __init__(self, fail_connect=False, auto_confirm=True):
        self.fail_connect = fail_connect
        self.auto_confirm = auto_confirm
        self.url = None
        self.token = None
        self.connected = False
        self.closed = False
        self.sent = []
        self.inbox = asyncio.Queue()

    async def connect(self, url, token):
        if self.fail_connect:
            raise WebSocketConnectionError("handshake refused")
        self.url = url
        self.token = token
        self.connected = True

    async def send(self, frame):
        if self.closed:
            raise TransportError("closed")
        self.sent.append(json.loads(frame))
        message = self.sent[-1]
        if self.auto_confirm and message["type"] == "subscribe":
            self.push(next_frame(int(message["id"])))

    def push(self, item):
        self.inbox.put_nowait(item)

    async def receive_message(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True

    def frames(self, frame_type):
        return [f for f in self.sent if f["type"] == frame_type]


class GatedTransport(FakeTransport):
    """FakeTransport whose connect blocks until gate is set"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()

    async def connect(self, url, token):
        await self.gate.wait()
        await super().connect(url, token)


class TransportFactory:
    """Hands out prepared FakeTransports in order, then fresh healthy ones"""

    def __init__(self, *transports):
        self.prepared = list(transports)
        self.created = []

    def __call__(self):
        transport = self.prepared.pop(0) if self.prepared else FakeTransport()
        self.created.append(transport)
        return transport


class RecordingObserver:
    def __init__(self):
        self.measurements = []
        self.errors = []
        self.completed = 0
        self.event = asyncio.Event()

    def on_next(self, measurement):
        self.measurements.append(measurement)
        self.event.set()

    def on_error(self, error):
        self.errors.append(error)
        self.event.set()

    def on_completed(self):
        self.completed += 1
        self.event.set()

    async def wait(self, timeout=2.0):
        await asyncio.wait_for(self.event.wait(), timeout)
        self.event.clear()


async def wait_until(condition, timeout=2.0):
    """Poll the event loop until condition() holds"""
    async def poll():
        while not condition():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def transport_factory():
    return TransportFactory()


@pytest.fixture
def endpoint_calls():
    return []


@pytest.fixture
def listener(transport_factory, endpoint_calls):
    async def endpoint_provider():
        endpoint_calls.append(True)
        return f"wss://api.tibber.com/v1-beta/gql/subscriptions/{len(endpoint_calls)}"

    return RealTimeMeasurementListener(
        "test-token",
        endpoint_provider,
        settings=ListenerSettings(),
        transport_factory=transport_factory,
        backoff=lambda attempts: 0
    )
