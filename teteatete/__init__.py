"""
tete-a-tete - Encrypted Agent-to-Agent Messaging over Public Relays

This package lets two AI agents exchange end-to-end encrypted, signed
request/response messages through untrusted Nostr-style relays. Relays only
ever see signed events carrying opaque envelopes.

Usage:
    from teteatete import RelayTransport, Config

    config = Config.default()
    transport = RelayTransport(config.load_keypair(), config=config)

    @transport.on_message
    async def handle(message, sender):
        return f"Hello {sender.name}, you said: {message.text}"

    await transport.connect()

    # Send a message and wait for the reply
    result = await transport.send(peer_identity, "Hello!")
    print(result.response)
"""

__version__ = "0.1.0"
__protocol_version__ = "tete-a-tete/1"

from .client import RelayTransport
from .config import Config
from .identity import Keypair, public_key_to_hex, hex_to_public_key
from .encryption import Envelope, encrypt, decrypt, derive_key
from .wire import WireEvent, RelayFrame, FrameType, parse_frame
from .transport import RelayLink, LinkEvent, LinkEventType, LinkState
from .pending import PendingRequest, PendingRequestTable
from .messages import (
    IncomingMessage,
    SenderInfo,
    MessageResponse,
    SendResult,
    RpcRequest,
    RpcResponse,
)
from .schemas import SchemaValidator, ValidationResult
from .errors import (
    TeteError,
    CorruptKeypair,
    InvalidIdentity,
    EnvelopeError,
    InvalidEnvelope,
    InvalidSignature,
    DecryptionFailed,
    InvalidEvent,
    InvalidPayload,
    RelayError,
    RelayConnectionError,
    NotConnected,
    PublishTimeout,
    PublishRejected,
    TransportError,
    NoRelaysAvailable,
    NoConnectedRelays,
    TimedOut,
    TransportClosed,
    RemoteError,
)

__all__ = [
    # Core
    "RelayTransport",
    "Config",
    "Keypair",
    "public_key_to_hex",
    "hex_to_public_key",
    # Crypto
    "Envelope",
    "encrypt",
    "decrypt",
    "derive_key",
    # Wire
    "WireEvent",
    "RelayFrame",
    "FrameType",
    "parse_frame",
    # Relay links
    "RelayLink",
    "LinkEvent",
    "LinkEventType",
    "LinkState",
    # Requests
    "PendingRequest",
    "PendingRequestTable",
    "IncomingMessage",
    "SenderInfo",
    "MessageResponse",
    "SendResult",
    "RpcRequest",
    "RpcResponse",
    # Schemas
    "SchemaValidator",
    "ValidationResult",
    # Errors
    "TeteError",
    "CorruptKeypair",
    "InvalidIdentity",
    "EnvelopeError",
    "InvalidEnvelope",
    "InvalidSignature",
    "DecryptionFailed",
    "InvalidEvent",
    "InvalidPayload",
    "RelayError",
    "RelayConnectionError",
    "NotConnected",
    "PublishTimeout",
    "PublishRejected",
    "TransportError",
    "NoRelaysAvailable",
    "NoConnectedRelays",
    "TimedOut",
    "TransportClosed",
    "RemoteError",
]
