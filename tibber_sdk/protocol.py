"""graphql-transport-ws frames - building outbound frames, parsing inbound ones"""
import json
from dataclasses import dataclass
from typing import Any, Iterable

from tibber_sdk.errors import ProtocolError

CONNECTION_INIT = "connection_init"
CONNECTION_ACK = "connection_ack"
SUBSCRIBE = "subscribe"
NEXT = "next"
ERROR = "error"
COMPLETE = "complete"


@dataclass(frozen=True)
class Message:
    """
    One inbound frame.

    Attributes:
        id: Stream key the frame belongs to, None for connection level frames.
        type: Message type tag (next, error, complete, connection_ack, ...).
        payload: Decoded payload, None when absent.
    """
    id: int | None
    type: str | None
    payload: Any = None


def connection_init_frame(token: str, user_agent: str) -> str:
    return json.dumps({
        "type": CONNECTION_INIT,
        "payload": {"token": token, "userAgent": user_agent}
    })


def subscribe_frame(stream_key: int, query: str) -> str:
    # ID has to be unique for this session
    return json.dumps({
        "payload": {"query": query, "variables": {}, "extensions": {}},
        "type": SUBSCRIBE,
        "id": str(stream_key)
    })


def unsubscribe_frame(stream_key: int) -> str:
    return json.dumps({"type": COMPLETE, "id": str(stream_key)})


def _stream_key(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid stream id: {value!r}") from e


def parse_message(text: str) -> Message:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON frame: {text[:100]!r}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame is not a JSON object: {text[:100]!r}")

    return Message(id=_stream_key(data.get("id")), type=data.get("type"), payload=data.get("payload"))


def parse_messages(text: str) -> list[Message]:
    """
    Parse one physical receive.

    The server may batch several JSON objects per receive, separated by newlines.
    """
    return [parse_message(line) for line in text.split("\n") if line.strip()]


def group_by_stream(messages: Iterable[Message]) -> dict[int | None, list[Message]]:
    """Group messages by stream key, keeping the order in which keys and messages appear"""
    groups: dict[int | None, list[Message]] = {}
    for message in messages:
        groups.setdefault(message.id, []).append(message)
    return groups


def error_messages(payload: Any) -> list[str]:
    """
    Extract error messages from a payload.

    Accepts {"errors": [...]} as well as a bare list of GraphQL error objects.
    """
    if isinstance(payload, dict):
        errors = payload.get("errors") or []
    elif isinstance(payload, list):
        errors = payload
    else:
        errors = []

    messages = []
    for error in errors:
        if isinstance(error, dict):
            messages.append(str(error.get("message", error)))
        else:
            messages.append(str(error))
    return messages
