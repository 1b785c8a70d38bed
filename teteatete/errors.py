"""
Exception hierarchy for tete-a-tete.

Transport-level failures (connection drops, publish timeouts) are retried or
surfaced as a single failed send. Security failures on inbound traffic are
logged and dropped by the transport and never reach the application. Caller
errors are raised directly from the operation that detected them.
"""

from typing import Optional


class TeteError(Exception):
    """Base class for all tete-a-tete errors."""


class CorruptKeypair(TeteError):
    """Keypair file exists but cannot be parsed or is inconsistent."""


class InvalidIdentity(TeteError, ValueError):
    """Identity string is not a hex-encoded 32-byte public key."""


class EnvelopeError(TeteError):
    """Base class for envelope codec failures."""


class InvalidEnvelope(EnvelopeError):
    """Envelope JSON is malformed."""


class InvalidSignature(EnvelopeError):
    """Envelope signature does not verify against the sender key."""


class DecryptionFailed(EnvelopeError):
    """Authentication tag mismatch or malformed ciphertext."""


class InvalidEvent(TeteError):
    """Wire event fails schema, id or signature checks."""


class InvalidPayload(TeteError):
    """Decrypted payload is not a recognizable JSON-RPC message."""


class RelayError(TeteError):
    """Base class for single-relay failures."""


class RelayConnectionError(RelayError):
    """Could not open a connection to the relay."""


class NotConnected(RelayError):
    """Operation requires a connected relay link."""


class PublishTimeout(RelayError):
    """Relay did not acknowledge a published event in time."""


class PublishRejected(RelayError):
    """Relay acknowledged a published event with a failure."""


class TransportError(TeteError):
    """Base class for orchestrator-level failures."""


class NoRelaysAvailable(TransportError):
    """Every configured relay failed to connect."""


class NoConnectedRelays(TransportError):
    """A send was attempted while no relay link is connected."""


class TimedOut(TransportError):
    """No response arrived before the request deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Request timed out after {timeout:g}s")
        self.timeout = timeout


class TransportClosed(TransportError):
    """The transport was disconnected while the request was pending."""


class RemoteError(TransportError):
    """The remote agent answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Optional[object] = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.data = data
