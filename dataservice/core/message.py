import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import SerializationError

TIME_TO_LIVE = timedelta(days=7)
CONTENT_TYPE = "application/json"

# Pulsar property keys written by the publisher itself.
MESSAGE_ID_KEY = "message-id"
SUBJECT_KEY = "subject"
CONTENT_TYPE_KEY = "content-type"
EXPIRES_AT_KEY = "expires-at"
RESERVED_PROPERTY_KEYS = frozenset(
    {MESSAGE_ID_KEY, SUBJECT_KEY, CONTENT_TYPE_KEY, EXPIRES_AT_KEY}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """
    The logical unit published to and consumed from the broker.
    Immutable: use dataclasses.replace to derive a copy with a new source.
    """

    content: str
    type: str = "info"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    source: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        try:
            uuid.UUID(self.id)
        except (TypeError, ValueError, AttributeError):
            raise ValueError(f"Message id must be a UUID string, got {self.id!r}.") from None
        if not isinstance(self.content, str) or not self.content:
            raise ValueError("Message content cannot be empty.")
        if not isinstance(self.type, str) or not self.type:
            raise ValueError("Message type cannot be empty.")
        if self.created_at.tzinfo is None:
            object.__setattr__(
                self, "created_at", self.created_at.replace(tzinfo=timezone.utc)
            )


@dataclass(frozen=True)
class Envelope:
    """Wire unit handed to a Pulsar producer."""

    body: bytes
    properties: dict[str, str]
    event_timestamp: int


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "content": message.content,
        "type": message.type,
        "createdAt": _format_timestamp(message.created_at),
        "source": message.source,
        "properties": dict(message.properties),
    }


def encode(message: Message, sent_at: datetime | None = None) -> Envelope:
    """
    Builds the envelope for a message: JSON body plus Pulsar properties.

    Every entry of message.properties becomes its own Pulsar property. Keys that
    collide with the publisher's reserved keys are rejected.
    """
    clashes = RESERVED_PROPERTY_KEYS.intersection(message.properties)
    if clashes:
        raise SerializationError(
            f"Message {message.id} uses reserved property keys: {sorted(clashes)}"
        )

    sent_at = sent_at or _utcnow()
    try:
        body = json.dumps(to_dict(message), separators=(",", ":")).encode("utf-8")
        properties = {
            str(key): value if isinstance(value, str) else json.dumps(value)
            for key, value in message.properties.items()
        }
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Message {message.id} cannot be serialized: {e}"
        ) from e

    properties[MESSAGE_ID_KEY] = message.id
    properties[SUBJECT_KEY] = message.type
    properties[CONTENT_TYPE_KEY] = CONTENT_TYPE
    properties[EXPIRES_AT_KEY] = _format_timestamp(sent_at + TIME_TO_LIVE)

    return Envelope(
        body=body,
        properties=properties,
        event_timestamp=int(message.created_at.timestamp() * 1000),
    )


def decode(body: bytes) -> Message:
    """Parses an envelope body back into a Message."""
    try:
        data = json.loads(body.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("envelope body is not a JSON object")

        properties = data.get("properties") or {}
        if not isinstance(properties, dict):
            raise ValueError("'properties' is not a JSON object")

        return Message(
            id=data["id"],
            content=data["content"],
            type=data.get("type") or "info",
            created_at=_parse_timestamp(data["createdAt"]),
            source=data.get("source"),
            properties=properties,
        )
    except (UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"Invalid message envelope: {e}") from e


def is_expired(properties: dict[str, str], now: datetime | None = None) -> bool:
    """True when the envelope carries an 'expires-at' property in the past."""
    expires_at = properties.get(EXPIRES_AT_KEY)
    if not expires_at:
        return False
    try:
        return _parse_timestamp(expires_at) <= (now or _utcnow())
    except ValueError:
        return False
