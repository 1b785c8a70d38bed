"""
Message encryption and signing for relay transport.

Envelopes are encrypted with ChaCha20-Poly1305 (IETF, 96-bit nonce) under a
key derived from both parties' Ed25519 public keys, and the ciphertext plus
nonce is signed with the sender's Ed25519 key.

The symmetric key depends only on the two public identities. There is no
ephemeral secret, so this provides no forward secrecy and anyone who knows
the derivation scheme and both public keys can derive the key.
"""

import json
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from typing import Union

from nacl.utils import random
from nacl.exceptions import CryptoError
from nacl.bindings import (
    crypto_aead_chacha20poly1305_ietf_encrypt,
    crypto_aead_chacha20poly1305_ietf_decrypt,
    crypto_aead_chacha20poly1305_ietf_NPUBBYTES,
    crypto_aead_chacha20poly1305_ietf_ABYTES,
)

from .errors import InvalidEnvelope, InvalidSignature, DecryptionFailed, InvalidIdentity
from .identity import Keypair, hex_to_public_key
from .schemas import validate, ENVELOPE_SCHEMA

logger = logging.getLogger(__name__)

KEY_DOMAIN = b"tete-a-tete-v1"
NONCE_SIZE = crypto_aead_chacha20poly1305_ietf_NPUBBYTES  # 12
TAG_SIZE = crypto_aead_chacha20poly1305_ietf_ABYTES  # 16


@dataclass(frozen=True)
class Envelope:
    """Encrypted and signed payload between two identities."""
    ciphertext: bytes       # encrypted data followed by the 16-byte tag
    nonce: bytes
    sender_public_key: str  # hex
    signature: bytes

    def to_dict(self) -> dict:
        return {
            'ciphertext': base64.b64encode(self.ciphertext).decode(),
            'nonce': base64.b64encode(self.nonce).decode(),
            'senderPubKey': self.sender_public_key,
            'signature': base64.b64encode(self.signature).decode(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        result = validate(ENVELOPE_SCHEMA, data)
        if not result.valid:
            raise InvalidEnvelope("; ".join(result.error_messages))

        try:
            return cls(
                ciphertext=base64.b64decode(data['ciphertext'], validate=True),
                nonce=base64.b64decode(data['nonce'], validate=True),
                sender_public_key=data['senderPubKey'],
                signature=base64.b64decode(data['signature'], validate=True),
            )
        except (binascii.Error, ValueError) as e:
            raise InvalidEnvelope(f"Envelope field is not base64: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> "Envelope":
        try:
            data = json.loads(text)
        except (TypeError, ValueError, RecursionError) as e:
            raise InvalidEnvelope(f"Envelope is not JSON: {e}") from e
        return cls.from_dict(data)

    @property
    def signed_data(self) -> bytes:
        return self.ciphertext + self.nonce


def derive_key(public_key_a: bytes, public_key_b: bytes) -> bytes:
    """
    Derive the shared symmetric key for a pair of identities.

    Keys are sorted byte-wise first so both directions derive the same key.
    """
    first, second = sorted([public_key_a, public_key_b])
    return hashlib.sha256(first + second + KEY_DOMAIN).digest()


def encrypt(
    plaintext: Union[str, bytes],
    sender: Keypair,
    recipient_public_key: bytes,
) -> Envelope:
    """Encrypt and sign a message for a recipient."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode('utf-8')

    key = derive_key(sender.public_key, recipient_public_key)
    nonce = random(NONCE_SIZE)
    ciphertext = crypto_aead_chacha20poly1305_ietf_encrypt(plaintext, None, nonce, key)
    signature = sender.sign(ciphertext + nonce)

    return Envelope(
        ciphertext=ciphertext,
        nonce=nonce,
        sender_public_key=sender.identity,
        signature=signature,
    )


def decrypt(envelope: Envelope, recipient: Keypair) -> str:
    """
    Verify and decrypt an envelope addressed to `recipient`.

    Raises:
        InvalidSignature: if the signature does not verify; nothing is decrypted
        DecryptionFailed: if the tag does not authenticate or lengths are wrong
    """
    try:
        sender_public_key = hex_to_public_key(envelope.sender_public_key)
    except InvalidIdentity as e:
        raise InvalidSignature(f"Bad sender key: {e}") from e

    if not Keypair.verify_signature(sender_public_key, envelope.signed_data, envelope.signature):
        raise InvalidSignature("Invalid signature")

    if len(envelope.nonce) != NONCE_SIZE:
        raise DecryptionFailed(f"Nonce must be {NONCE_SIZE} bytes, got {len(envelope.nonce)}")
    if len(envelope.ciphertext) < TAG_SIZE:
        raise DecryptionFailed("Ciphertext shorter than authentication tag")

    key = derive_key(sender_public_key, recipient.public_key)
    try:
        plaintext = crypto_aead_chacha20poly1305_ietf_decrypt(
            envelope.ciphertext, None, envelope.nonce, key
        )
    except CryptoError as e:
        raise DecryptionFailed("Authentication tag mismatch") from e

    try:
        return plaintext.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecryptionFailed("Plaintext is not UTF-8") from e
