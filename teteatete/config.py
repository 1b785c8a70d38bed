"""
Configuration management for tete-a-tete.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict, fields
from typing import List, Union

from .identity import Keypair
from .wire import DEFAULT_EVENT_KIND

# Public relays used when none are configured.
# Can be overridden via the TETE_RELAYS environment variable
# Format: "wss://relay1,wss://relay2"
DEFAULT_RELAYS = ["wss://relay.damus.io", "wss://nos.lol"]

_relays_env = os.environ.get("TETE_RELAYS")
if _relays_env:
    DEFAULT_RELAYS = [url.strip() for url in _relays_env.split(",") if url.strip()]

DEFAULT_KEYPAIR_PATH = os.environ.get(
    "TETE_KEYPAIR_PATH",
    str(Path.home() / ".openclaw" / "ttt-keypair.json"),
)


@dataclass
class Config:
    """tete-a-tete transport configuration."""
    relays: List[str] = field(default_factory=lambda: DEFAULT_RELAYS.copy())
    keypair_path: str = DEFAULT_KEYPAIR_PATH
    agent_name: str = "tete-a-tete"
    event_kind: int = DEFAULT_EVENT_KIND
    send_timeout: float = 30.0       # seconds to wait for a response
    publish_timeout: float = 10.0    # seconds to wait for a relay OK
    connect_timeout: float = 10.0
    reconnect_delay: float = 3.0
    auto_reconnect: bool = True
    subscription_lookback: int = 60  # seconds of relay history requested on subscribe
    seen_event_cache_size: int = 4096
    queue_size: int = 1024

    def __post_init__(self):
        for name in ("send_timeout", "publish_timeout", "connect_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create configuration from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Config":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def load_keypair(self) -> Keypair:
        """Load the configured keypair, generating it on first use."""
        return Keypair.load_or_generate(self.keypair_path)
