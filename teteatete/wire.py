"""
Relay wire format.

Events are signed, relay-transportable containers. Frames are the
line-delimited JSON arrays exchanged with a relay:

    ["REQ", sub_id, filter]      client -> relay
    ["CLOSE", sub_id]            client -> relay
    ["EVENT", event]             client -> relay (publish)
    ["EVENT", sub_id, event]     relay -> client (delivery)
    ["OK", event_id, ok, reason] relay -> client
    ["EOSE", sub_id]             relay -> client
    ["NOTICE", message]          relay -> client
"""

import json
import time
import hashlib
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, List, Any

from .errors import InvalidEvent
from .identity import Keypair, hex_to_public_key
from .schemas import validate, WIRE_EVENT_SCHEMA

logger = logging.getLogger(__name__)

# Encrypted direct message
DEFAULT_EVENT_KIND = 4


def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: List[List[str]],
    content: str,
) -> str:
    """Canonical serialization hashed into the event id."""
    return json.dumps(
        [0, pubkey, created_at, kind, tags, content],
        separators=(',', ':'),
        ensure_ascii=False,
    )


@dataclass(frozen=True)
class WireEvent:
    """Signed relay event carrying an encrypted envelope plus routing tags."""
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: List[List[str]]
    content: str
    sig: str

    @classmethod
    def create(
        cls,
        keypair: Keypair,
        kind: int,
        content: str,
        tags: Optional[List[List[str]]] = None,
        created_at: Optional[int] = None,
    ) -> "WireEvent":
        """Build and sign a new event."""
        tags = [list(tag) for tag in (tags or [])]
        created_at = int(time.time()) if created_at is None else created_at
        pubkey = keypair.identity

        event_id = hashlib.sha256(
            serialize_event(pubkey, created_at, kind, tags, content).encode('utf-8')
        ).hexdigest()
        sig = keypair.sign(bytes.fromhex(event_id)).hex()

        return cls(
            id=event_id,
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content,
            sig=sig,
        )

    def compute_id(self) -> str:
        serialized = serialize_event(self.pubkey, self.created_at, self.kind, self.tags, self.content)
        return hashlib.sha256(serialized.encode('utf-8')).hexdigest()

    def verify(self) -> bool:
        """Check that the id matches the content and `sig` signs the id."""
        if self.compute_id() != self.id:
            return False
        try:
            public_key = hex_to_public_key(self.pubkey)
            signature = bytes.fromhex(self.sig)
        except ValueError:
            return False
        return Keypair.verify_signature(public_key, bytes.fromhex(self.id), signature)

    def tag_values(self, name: str) -> List[str]:
        """Values of every tag named `name` (first element after the name)."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'pubkey': self.pubkey,
            'created_at': self.created_at,
            'kind': self.kind,
            'tags': [list(tag) for tag in self.tags],
            'content': self.content,
            'sig': self.sig,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "WireEvent":
        """Parse an event; raises InvalidEvent if it does not match the schema."""
        result = validate(WIRE_EVENT_SCHEMA, data)
        if not result.valid:
            raise InvalidEvent("; ".join(result.error_messages))

        return cls(
            id=data['id'],
            pubkey=data['pubkey'],
            created_at=data['created_at'],
            kind=data['kind'],
            tags=[list(tag) for tag in data['tags']],
            content=data['content'],
            sig=data['sig'],
        )


class FrameType(Enum):
    EVENT = "EVENT"
    OK = "OK"
    EOSE = "EOSE"
    NOTICE = "NOTICE"


@dataclass
class RelayFrame:
    """Decoded relay -> client frame."""
    type: FrameType
    subscription_id: Optional[str] = None
    event: Optional[WireEvent] = None
    event_id: Optional[str] = None
    ok: bool = False
    message: str = ""


def req_frame(subscription_id: str, filter: dict) -> str:
    return json.dumps(["REQ", subscription_id, filter])


def close_frame(subscription_id: str) -> str:
    return json.dumps(["CLOSE", subscription_id])


def event_frame(event: WireEvent) -> str:
    return json.dumps(["EVENT", event.to_dict()])


def parse_frame(text: Any) -> Optional[RelayFrame]:
    """
    Decode a relay frame.

    Returns None for anything malformed or unrecognized; parsing never raises.
    """
    if not isinstance(text, str):
        return None

    try:
        msg = json.loads(text)
    except (ValueError, RecursionError):
        return None

    if not isinstance(msg, list) or len(msg) < 2 or not isinstance(msg[0], str):
        return None

    msg_type, args = msg[0], msg[1:]

    if msg_type == "EVENT":
        if len(args) < 2 or not isinstance(args[0], str):
            return None
        try:
            event = WireEvent.from_dict(args[1])
        except InvalidEvent as e:
            logger.debug(f"Dropping malformed event: {e}")
            return None
        return RelayFrame(type=FrameType.EVENT, subscription_id=args[0], event=event)

    if msg_type == "OK":
        if len(args) < 2 or not isinstance(args[0], str) or not isinstance(args[1], bool):
            return None
        reason = args[2] if len(args) > 2 and isinstance(args[2], str) else ""
        return RelayFrame(type=FrameType.OK, event_id=args[0], ok=args[1], message=reason)

    if msg_type == "EOSE":
        if not isinstance(args[0], str):
            return None
        return RelayFrame(type=FrameType.EOSE, subscription_id=args[0])

    if msg_type == "NOTICE":
        return RelayFrame(type=FrameType.NOTICE, message=str(args[0]))

    return None
