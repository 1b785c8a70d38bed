"""
Transport layer for tete-a-tete.
Handles the WebSocket connection to a single relay: subscriptions,
acknowledged publishing, inbound frame dispatch and auto-reconnect.
"""

import asyncio
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any

import websockets

from .errors import RelayConnectionError, NotConnected, PublishTimeout, PublishRejected
from .wire import WireEvent, FrameType, parse_frame, req_frame, close_frame, event_frame

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 3.0
DEFAULT_QUEUE_SIZE = 1024


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LinkEventType(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    EVENT = "event"
    ERROR = "error"


@dataclass
class LinkEvent:
    """Typed notification emitted by a relay link."""
    type: LinkEventType
    relay_url: str
    event: Optional[WireEvent] = None
    subscription_id: Optional[str] = None
    error: Optional[Exception] = None


class RelayLink:
    """
    WebSocket link to one relay.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED, and back to
    DISCONNECTED on close. With auto-reconnect enabled a dropped or failed
    connection is retried every `reconnect_delay` seconds until it succeeds
    or `disconnect()` is called.

    Every notification is put on `events`, a bounded queue which may be
    shared between several links.
    """

    def __init__(
        self,
        url: str,
        events: Optional[asyncio.Queue] = None,
        auto_reconnect: bool = True,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ):
        self.url = url
        self.events = events if events is not None else asyncio.Queue(maxsize=DEFAULT_QUEUE_SIZE)
        self.auto_reconnect = auto_reconnect
        self.reconnect_delay = reconnect_delay
        self.publish_timeout = publish_timeout
        self.connect_timeout = connect_timeout

        self._ws = None
        self._state = LinkState.DISCONNECTED
        self._subscriptions: Dict[str, dict] = {}
        self._pending_acks: Dict[str, asyncio.Future] = {}
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

    def __repr__(self) -> str:
        return f"RelayLink({self.url!r}, state={self._state.value})"

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == LinkState.CONNECTED and self._ws is not None

    @property
    def subscriptions(self) -> Dict[str, dict]:
        return dict(self._subscriptions)

    async def connect(self) -> None:
        """
        Connect to the relay.

        On failure a reconnect is scheduled (if enabled) and the error is
        re-raised as RelayConnectionError.
        """
        self._closing = False
        try:
            await self._open()
        except RelayConnectionError as e:
            await self._emit(LinkEvent(LinkEventType.ERROR, self.url, error=e))
            self._schedule_reconnect()
            raise

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True

        if self._reconnect_task:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        ws = self._ws
        was_connected = self._state == LinkState.CONNECTED
        self._ws = None
        self._state = LinkState.DISCONNECTED

        if self._receive_task:
            self._receive_task.cancel()
            self._receive_task = None

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing {self.url}: {e}")

        self._fail_pending_acks()

        if was_connected:
            await self._emit(LinkEvent(LinkEventType.DISCONNECTED, self.url))
        logger.info(f"Disconnected from relay {self.url}")

    async def subscribe(self, subscription_id: str, filter: dict) -> None:
        """Register a subscription; sent now if connected and on every reconnect."""
        self._subscriptions[subscription_id] = filter
        if self.is_connected:
            try:
                await self._send(req_frame(subscription_id, filter))
            except NotConnected:
                logger.debug(f"Subscription {subscription_id} deferred until {self.url} reconnects")

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription and close it on the relay if connected."""
        self._subscriptions.pop(subscription_id, None)
        if self.is_connected:
            try:
                await self._send(close_frame(subscription_id))
            except NotConnected:
                pass

    async def publish(self, event: WireEvent) -> None:
        """
        Publish an event and wait for the relay's OK.

        Raises:
            NotConnected: if the link is not connected (events are never queued)
            PublishTimeout: if no OK arrives within `publish_timeout`
            PublishRejected: if the relay answers OK with success=false
        """
        if not self.is_connected:
            raise NotConnected(f"Not connected to relay {self.url}")

        future = asyncio.get_running_loop().create_future()
        self._pending_acks[event.id] = future

        try:
            await self._send(event_frame(event))
            await asyncio.wait_for(future, timeout=self.publish_timeout)
        except asyncio.TimeoutError:
            raise PublishTimeout(f"Publish to {self.url} timed out") from None
        finally:
            if self._pending_acks.get(event.id) is future:
                del self._pending_acks[event.id]

    async def _open(self) -> None:
        self._state = LinkState.CONNECTING
        logger.info(f"Connecting to relay: {self.url}")
        try:
            ws = await websockets.connect(
                self.url,
                ping_interval=30,
                ping_timeout=10,
                open_timeout=self.connect_timeout,
            )
        except Exception as e:
            self._state = LinkState.DISCONNECTED
            raise RelayConnectionError(f"Failed to connect to {self.url}: {e}") from e

        if self._closing:
            await ws.close()
            self._state = LinkState.DISCONNECTED
            raise RelayConnectionError(f"Link to {self.url} closed while connecting")

        self._ws = ws
        self._state = LinkState.CONNECTED
        self._receive_task = asyncio.create_task(self._receive_loop(ws))

        try:
            for subscription_id, filter in list(self._subscriptions.items()):
                await ws.send(req_frame(subscription_id, filter))
        except websockets.ConnectionClosed:
            logger.warning(f"Relay {self.url} closed while resubscribing")
            return

        logger.info(f"Connected to relay {self.url} ({len(self._subscriptions)} subscriptions)")
        await self._emit(LinkEvent(LinkEventType.CONNECTED, self.url))

    async def _send(self, text: str) -> None:
        ws = self._ws
        if ws is None:
            raise NotConnected(f"Not connected to relay {self.url}")
        try:
            await ws.send(text)
        except websockets.ConnectionClosed as e:
            raise NotConnected(f"Relay {self.url} connection closed") from e

    async def _receive_loop(self, ws) -> None:
        """Background task to receive frames until the connection closes."""
        try:
            while True:
                try:
                    message = await ws.recv()
                except websockets.ConnectionClosed:
                    logger.warning(f"Relay connection closed: {self.url}")
                    break
                try:
                    await self._handle_message(message)
                except Exception as e:
                    logger.warning(f"Dropping frame from {self.url} after handler error: {e!r}")
        except Exception as e:
            logger.error(f"Receive loop error on {self.url}: {e}")
        finally:
            if self._ws is ws:
                await self._handle_close(ws)

    async def _handle_message(self, message: Any) -> None:
        frame = parse_frame(message)
        if frame is None:
            logger.debug(f"Dropping unrecognized frame from {self.url}")
            return

        if frame.type == FrameType.EVENT:
            await self._emit(LinkEvent(
                LinkEventType.EVENT,
                self.url,
                event=frame.event,
                subscription_id=frame.subscription_id,
            ))
        elif frame.type == FrameType.OK:
            future = self._pending_acks.get(frame.event_id)
            if future is not None and not future.done():
                if frame.ok:
                    future.set_result(frame.message)
                else:
                    future.set_exception(PublishRejected(frame.message or "Publish failed"))
        elif frame.type == FrameType.NOTICE:
            logger.debug(f"Notice from {self.url}: {frame.message}")
        # EOSE marks the end of stored events; nothing to do

    async def _handle_close(self, ws) -> None:
        self._ws = None
        self._receive_task = None
        self._state = LinkState.DISCONNECTED
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing socket for {self.url}: {e}")
        self._fail_pending_acks()
        await self._emit(LinkEvent(LinkEventType.DISCONNECTED, self.url))
        self._schedule_reconnect()

    def _fail_pending_acks(self) -> None:
        for future in self._pending_acks.values():
            if not future.done():
                future.set_exception(NotConnected(f"Relay {self.url} disconnected"))
        self._pending_acks.clear()

    def _schedule_reconnect(self) -> None:
        if not self.auto_reconnect or self._closing:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closing and not self.is_connected:
            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                break
            attempt += 1
            try:
                await self._open()
            except RelayConnectionError as e:
                logger.debug(f"Reconnect attempt {attempt} to {self.url} failed: {e}")
                continue
        self._reconnect_task = None

    async def _emit(self, link_event: LinkEvent) -> None:
        await self.events.put(link_event)
