"""Tibber GraphQL API client - HTTP bootstrap plus real-time measurement subscriptions"""
import asyncio
import logging
import time
from typing import Any, Iterable

import requests

from tibber_sdk.config import API_ENDPOINT, CONFIRMATION_TIMEOUT, HTTP_TIMEOUT, USER_AGENT, ListenerSettings
from tibber_sdk.errors import ApplicationError, TibberApiError, TibberApiHttpError
from tibber_sdk.listener import RealTimeMeasurementListener
from tibber_sdk.models import RealTimeDevice
from tibber_sdk.queries import REALTIME_DEVICE_QUERY
from tibber_sdk.registry import HomeStream

logger = logging.getLogger(__name__)


def validate_result(result: dict[str, Any]) -> None:
    """Raise TibberApiError when a GraphQL result carries errors"""
    errors = result.get("errors")
    if not errors:
        return

    lines = []
    for error in errors:
        locations = "; ".join(
            f"line: {loc.get('line')}, column: {loc.get('column')}" for loc in error.get("locations") or []
        )
        lines.append(f"{error.get('message')} (locations: {locations})")
    raise TibberApiError("Query execution failed:\n" + "\n".join(lines))


class TibberApiClient:
    """
    GraphQL client towards the Tibber API.

    Plain queries go over HTTP; live measurements are streamed over a single
    shared WebSocket session, see start_real_time_measurement_listener().
    """

    def __init__(
        self,
        token: str,
        endpoint: str = API_ENDPOINT,
        user_agent: str = USER_AGENT,
        timeout: float = HTTP_TIMEOUT,
        settings: ListenerSettings | None = None
    ):
        """
        Initialize the client.

        Args:
            token: Tibber API token
            endpoint: GraphQL HTTP endpoint
            user_agent: User-Agent header and connection_init client id
            timeout: HTTP timeout in seconds
            settings: Real-time listener timing
        """
        if not token or not token.strip():
            raise ValueError("access token required")

        self.token = token
        self.endpoint = endpoint
        self.user_agent = user_agent
        self.timeout = timeout
        self.listener = RealTimeMeasurementListener(
            token,
            self._subscription_url,
            user_agent=user_agent,
            settings=settings
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.listener.close()

    def _post(self, query: str) -> dict[str, Any]:
        """
        Executes the HTTP POST.
        Is ran in a thread to not block the main loop.
        """
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "User-Agent": self.user_agent
        }

        started = time.monotonic()
        try:
            response = requests.post(
                self.endpoint,
                json={"query": query},
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TibberApiHttpError(self.endpoint, "POST", time.monotonic() - started, str(e)) from e

        if not response.ok:
            raise TibberApiHttpError(
                self.endpoint,
                "POST",
                time.monotonic() - started,
                status_code=response.status_code,
                reason=response.reason,
                response_content=response.text
            )

        try:
            return response.json()
        except ValueError as e:
            raise TibberApiHttpError(
                self.endpoint,
                "POST",
                time.monotonic() - started,
                f"Invalid JSON response: {e}",
                status_code=response.status_code,
                reason=response.reason,
                response_content=response.text
            ) from e

    async def query(self, query: str) -> dict[str, Any]:
        """
        Execute a raw GraphQL query.

        Returns:
            The decoded GraphQL result ({"data": ..., "errors": ...})
        """
        return await asyncio.to_thread(self._post, query)

    async def mutation(self, mutation: str) -> dict[str, Any]:
        """Execute a raw GraphQL mutation"""
        return await asyncio.to_thread(self._post, mutation)

    async def validate_realtime_device(self) -> RealTimeDevice:
        """
        HTTP bootstrap: fetch the WebSocket URL and the homes with a real-time meter.

        Raises:
            TibberApiHttpError: the HTTP call failed
            TibberApiError: the query returned errors
            ApplicationError: no home, no home with Pulse, or no WebSocket URL
        """
        result = await self.query(REALTIME_DEVICE_QUERY)
        validate_result(result)

        viewer = (result.get("data") or {}).get("viewer") or {}
        wss_url = viewer.get("websocketSubscriptionUrl")
        homes = viewer.get("homes") or []

        if not homes:
            raise ApplicationError("No homes found")

        home_ids = []
        for home in homes:
            if (home.get("features") or {}).get("realTimeConsumptionEnabled"):
                home_ids.append(home["id"])
                logger.info(f"Found home: {home.get('appNickname') or 'Home'} ({home['id']})")

        if not home_ids:
            raise ApplicationError("No home with Pulse found (realTimeConsumptionEnabled=True)")

        if not wss_url:
            raise ApplicationError("No WebSocket URL received")

        return RealTimeDevice(websocket_subscription_url=wss_url, home_ids=tuple(home_ids))

    async def _subscription_url(self) -> str:
        device = await self.validate_realtime_device()
        return device.websocket_subscription_url

    async def start_real_time_measurement_listener(
        self,
        home_id: str,
        fields: Iterable[str] | None = None,
        timeout: float | None = CONFIRMATION_TIMEOUT
    ) -> HomeStream:
        """
        Start streaming live measurements of a home. Requires an active Tibber Pulse or Watty.

        Returns:
            HomeStream; subscribe observer(s) or iterate measurements() to access the values
        """
        return await self.listener.subscribe_home(home_id, fields=fields, timeout=timeout)

    async def stop_real_time_measurement_listener(self, home_id: str) -> None:
        await self.listener.unsubscribe_home(home_id)
