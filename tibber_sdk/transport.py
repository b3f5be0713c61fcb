"""WebSocket transport - one physical connection plus the graphql-transport-ws handshake"""
import asyncio
import json
import logging

import websockets
from websockets.protocol import State

from tibber_sdk import protocol
from tibber_sdk.config import USER_AGENT, WEBSOCKET_SUBPROTOCOL
from tibber_sdk.errors import TransportError, WebSocketConnectionError

logger = logging.getLogger(__name__)


class TransportSession:
    """
    Owns one WebSocket connection towards the Tibber subscription endpoint.

    send() is serialized internally; receive_message() must only be called
    by a single reader.
    """

    def __init__(self, user_agent: str = USER_AGENT, open_timeout: float = 10.0):
        self.user_agent = user_agent
        self.open_timeout = open_timeout
        self.url = None
        self._websocket = None
        self._ready = False
        self._send_lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._ready

    async def connect(self, url: str, token: str) -> None:
        """
        Open the socket and run the connection_init / connection_ack handshake.

        Raises:
            WebSocketConnectionError: connect failed, the peer closed the socket
                or answered with anything but connection_ack.
        """
        self.url = url
        logger.info(f"Tibber API: Connect WebSocket {url}")

        try:
            self._websocket = await websockets.connect(
                url,
                subprotocols=[WEBSOCKET_SUBPROTOCOL],
                additional_headers={"User-Agent": self.user_agent},
                open_timeout=self.open_timeout
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise WebSocketConnectionError(f"WebSocket connect to {url} failed: {e}") from e

        # --- STEP A: Connection Init ---
        # We are required to introduce ourselves.
        try:
            await self._websocket.send(protocol.connection_init_frame(token, self.user_agent))

            # --- STEP B: Wait for Ack ---
            # We may only subscribe when we receive a 'connection_ack'.
            response = await self._websocket.recv()
        except websockets.ConnectionClosed as e:
            await self.close()
            raise WebSocketConnectionError(f"WebSocket initialization failed: connection closed ({e})") from e
        except OSError as e:
            await self.close()
            raise WebSocketConnectionError(f"WebSocket initialization failed: {e}") from e

        try:
            message = json.loads(response)
        except (TypeError, json.JSONDecodeError):
            message = None

        if not isinstance(message, dict) or message.get("type") != protocol.CONNECTION_ACK:
            await self.close()
            raise WebSocketConnectionError(f"WebSocket initialization failed: {response}")

        self._ready = True
        logger.info("Tibber API: Authentication passed (connection_ack).")

    async def send(self, frame: str) -> None:
        """Write one complete text frame"""
        if not self._ready:
            raise TransportError("WebSocket session is not connected")

        try:
            async with self._send_lock:
                await self._websocket.send(frame)
        except (websockets.ConnectionClosed, OSError) as e:
            raise TransportError(f"WebSocket send failed: {e}") from e

        logger.debug(f"Tibber API: Sent {frame}")

    async def receive_message(self) -> str:
        """
        Wait for one complete message.

        Fragmented messages are reassembled by websockets before they are returned.
        Cancellation propagates unchanged.
        """
        if not self._ready:
            raise TransportError("WebSocket session is not connected")

        try:
            message = await self._websocket.recv()
        except (websockets.ConnectionClosed, OSError) as e:
            self._ready = False
            raise TransportError(f"WebSocket receive failed: {e}") from e

        if isinstance(message, bytes):
            message = message.decode("utf-8")
        return message

    async def close(self) -> None:
        """Graceful close handshake when the socket is still open. Never raises."""
        self._ready = False
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return

        if websocket.state in (State.OPEN, State.CLOSING):
            try:
                await websocket.close(reason="closed by client")
            except Exception as e:
                logger.debug(f"Tibber API: Error closing connection: {e}")
