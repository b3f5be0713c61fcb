"""Configuration for the Tibber client - endpoints, identifiers and listener timing"""
import os
from dataclasses import dataclass

API_ENDPOINT = "https://api.tibber.com/v1-beta/gql"
USER_AGENT = "Tibber-SDK-Python/0.1.0"

# Tibber requires the 'graphql-transport-ws' subprotocol
WEBSOCKET_SUBPROTOCOL = "graphql-transport-ws"

HTTP_TIMEOUT = 59

# Seconds a subscribe waits for the peer to confirm it
CONFIRMATION_TIMEOUT = 30.0


@dataclass(frozen=True)
class ListenerSettings:
    """
    Timing of the real-time listener.

    Attributes:
        stall_threshold: Seconds without data before a stream counts as stalled.
        liveness_interval: Seconds between two liveness sweeps.
        liveness_warmup: Seconds before the first sweep after the session starts.
        confirmation_timeout: Seconds a resubscribe waits for the peer to confirm it.
        jitter_min: Lower bound of the random part of a backoff delay.
        jitter_max: Upper bound of the random part of a backoff delay.
        backoff_cap: Upper bound of the quadratic part of a backoff delay.
    """
    stall_threshold: float = 60.0
    liveness_interval: float = 5.0
    liveness_warmup: float = 60.0
    confirmation_timeout: float = CONFIRMATION_TIMEOUT
    jitter_min: float = 5.0
    jitter_max: float = 60.0
    backoff_cap: float = 86400.0

    @classmethod
    def from_env(cls) -> "ListenerSettings":
        """Read overrides from TIBBER_* environment variables"""
        defaults = cls()
        return cls(
            stall_threshold=float(os.getenv("TIBBER_STALL_THRESHOLD", defaults.stall_threshold)),
            liveness_interval=float(os.getenv("TIBBER_LIVENESS_INTERVAL", defaults.liveness_interval)),
            liveness_warmup=float(os.getenv("TIBBER_LIVENESS_WARMUP", defaults.liveness_warmup)),
            confirmation_timeout=float(os.getenv("TIBBER_CONFIRMATION_TIMEOUT", defaults.confirmation_timeout)),
            jitter_min=float(os.getenv("TIBBER_BACKOFF_JITTER_MIN", defaults.jitter_min)),
            jitter_max=float(os.getenv("TIBBER_BACKOFF_JITTER_MAX", defaults.jitter_max)),
            backoff_cap=float(os.getenv("TIBBER_BACKOFF_CAP", defaults.backoff_cap)),
        )
