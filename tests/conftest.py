"""
Shared fixtures: an in-process relay and connected transports.
"""

import dataclasses

import pytest
import pytest_asyncio

from teteatete.client import RelayTransport
from teteatete.config import Config
from teteatete.identity import Keypair

from relay_server import MockRelay


@pytest.fixture
def fast_config():
    """Config with short timeouts so failure paths finish quickly."""
    return Config(
        relays=[],
        keypair_path="/nonexistent/ttt-keypair.json",
        send_timeout=3.0,
        publish_timeout=1.0,
        connect_timeout=1.0,
        reconnect_delay=0.05,
    )


@pytest_asyncio.fixture
async def relay():
    relay = MockRelay()
    await relay.start()
    yield relay
    await relay.stop()


@pytest_asyncio.fixture
async def second_relay():
    relay = MockRelay()
    await relay.start()
    yield relay
    await relay.stop()


@pytest_asyncio.fixture
async def make_transport(relay, fast_config):
    """Factory for transports connected to `relay` (or the given relays)."""
    created = []

    async def factory(handler=None, relays=None, keypair=None, **overrides):
        config = dataclasses.replace(fast_config, **overrides)
        transport = RelayTransport(keypair or Keypair.generate(), on_message=handler, config=config)
        await transport.connect(relays if relays is not None else [relay.url])
        created.append(transport)
        return transport

    yield factory

    for transport in created:
        await transport.disconnect()
