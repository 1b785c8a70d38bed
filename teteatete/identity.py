"""
Identity management for tete-a-tete agents.
Handles Ed25519 keypair generation, persistence, and signatures.

An agent's identity is the hex encoding of its Ed25519 public key.
"""

import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Union

from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError

from .errors import CorruptKeypair, InvalidIdentity
from .schemas import validate, KEYPAIR_SCHEMA

logger = logging.getLogger(__name__)

KEY_SIZE = 32

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def public_key_to_hex(public_key: bytes) -> str:
    """Convert a raw public key to its identity string."""
    return public_key.hex()


def hex_to_public_key(identity: str) -> bytes:
    """Convert an identity string back to raw public key bytes."""
    try:
        raw = bytes.fromhex(identity)
    except (TypeError, ValueError) as e:
        raise InvalidIdentity(f"Identity is not hex: {identity!r}") from e
    if len(raw) != KEY_SIZE:
        raise InvalidIdentity(f"Identity must encode {KEY_SIZE} bytes, got {len(raw)}")
    return raw


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.expanduser().absolute())
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


@dataclass(frozen=True)
class Keypair:
    """Ed25519 signing keypair. `private_key` is the 32-byte seed."""

    public_key: bytes
    private_key: bytes

    def __repr__(self) -> str:
        return f"Keypair(identity={self.identity!r})"

    @classmethod
    def generate(cls) -> "Keypair":
        """Generate a new keypair from the system CSPRNG."""
        signing_key = SigningKey.generate()
        return cls(
            public_key=bytes(signing_key.verify_key),
            private_key=bytes(signing_key),
        )

    @classmethod
    def from_private_key(cls, private_key: bytes) -> "Keypair":
        signing_key = SigningKey(private_key)
        return cls(public_key=bytes(signing_key.verify_key), private_key=private_key)

    @property
    def identity(self) -> str:
        """Hex-encoded public key."""
        return public_key_to_hex(self.public_key)

    @property
    def signing_key(self) -> SigningKey:
        return SigningKey(self.private_key)

    def sign(self, message: bytes) -> bytes:
        """Sign a message and return the detached 64-byte signature."""
        return self.signing_key.sign(message).signature

    @staticmethod
    def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
        """Verify a detached signature from another agent."""
        try:
            VerifyKey(public_key).verify(message, signature)
            return True
        except (BadSignatureError, TypeError, ValueError):
            return False

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Keypair":
        """Load keypair from file.

        Raises:
            CorruptKeypair: if the file is not a valid keypair document or the
                stored public key does not belong to the stored private key
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (UnicodeDecodeError, ValueError, RecursionError) as e:
            raise CorruptKeypair(f"Keypair file {path} is not valid JSON: {e}") from e

        result = validate(KEYPAIR_SCHEMA, data)
        if not result.valid:
            raise CorruptKeypair(
                f"Keypair file {path} is malformed: {'; '.join(result.error_messages)}"
            )

        keypair = cls.from_private_key(bytes.fromhex(data['privateKey']))
        if keypair.public_key != bytes.fromhex(data['publicKey']):
            raise CorruptKeypair(f"Keypair file {path} has a mismatched public key")

        return keypair

    def save(self, path: Union[str, Path]) -> None:
        """Save keypair to file (owner-only permissions, atomic replace)."""
        path = Path(path)
        data = {
            'publicKey': self.public_key.hex(),
            'privateKey': self.private_key.hex(),
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        path.chmod(0o600)

    @classmethod
    def load_or_generate(cls, path: Union[str, Path]) -> "Keypair":
        """Load the keypair at `path`, generating and persisting one if absent."""
        path = Path(path).expanduser()
        with _lock_for(path):
            if path.exists():
                return cls.load(path)

            keypair = cls.generate()
            keypair.save(path)
            logger.info(f"Generated new identity {keypair.identity} at {path}")
            return keypair
