"""Exceptions raised by the Tibber client"""


class TibberApiError(Exception):
    """Base class for every error raised by this package."""


class ApplicationError(TibberApiError):
    """The account can not be used for real-time measurements (no home, no Pulse, no URL)."""


class WebSocketConnectionError(TibberApiError):
    """Connecting or the connection_init/connection_ack handshake failed."""


class TransportError(TibberApiError):
    """Sending or receiving a frame failed on an established connection."""


class ProtocolError(TibberApiError):
    """A received frame could not be parsed."""


class AlreadySubscribedError(TibberApiError):
    """The home already has an active real-time subscription."""


class DuplicateObserverError(TibberApiError):
    """The observer is already registered to a home stream of this client."""


class SubscriptionInitializationError(TibberApiError):
    """The peer rejected a subscription or never confirmed it."""

    def __init__(self, home_id: str, error_message: str | None = None):
        self.home_id = home_id
        self.error_message = error_message
        message = f"Real-time measurement subscription for home {home_id} failed"
        if error_message:
            message = f"{message}: {error_message}"
        super().__init__(message)


class ObjectDisposedError(TibberApiError):
    """The listener has been closed."""


class TibberApiHttpError(TibberApiError):
    """
    An HTTP call towards the GraphQL endpoint failed.

    Carries enough of the request and response to be logged on its own.
    """

    MAXIMUM_BODY_LENGTH = 131071

    def __init__(
        self,
        url: str,
        method: str,
        duration: float,
        message: str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
        response_content: str | None = None,
    ):
        self.url = url
        self.method = method
        self.duration = duration
        self.status_code = status_code
        self.reason = reason
        self.response_content = response_content
        if message is None:
            message = f"HTTP '{method} {url}' call failed with status '{reason}' ({status_code})"
        super().__init__(message)

    def __str__(self) -> str:
        lines = [super().__str__(), f"Request: {self.method} {self.url} ({self.duration:.3f}s)"]

        if self.status_code is not None:
            lines.append(f"Status: {self.reason} ({self.status_code})")

        if self.response_content:
            content = self.response_content
            if len(content) > self.MAXIMUM_BODY_LENGTH:
                content = content[:self.MAXIMUM_BODY_LENGTH] + "…"
            lines.append("Response content:")
            lines.append(content)

        return "\n".join(lines)
