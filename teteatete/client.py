"""
Relay transport for tete-a-tete agents.

Turns the raw event streams of several relay links into correlated,
encrypted request/response pairs.
"""

import time
import uuid
import asyncio
import inspect
import logging
from collections import OrderedDict
from typing import Optional, List, Dict, Any, Set, Iterable

from .config import Config
from .identity import Keypair, hex_to_public_key
from .encryption import Envelope, encrypt, decrypt
from .errors import (
    EnvelopeError, InvalidSignature, InvalidPayload, RelayError, RemoteError,
    NoRelaysAvailable, NoConnectedRelays, TransportClosed,
)
from .messages import (
    RpcRequest, RpcResponse, IncomingMessage, SenderInfo, MessageResponse,
    SendResult, MessageHandler, parse_payload,
    METHOD_MESSAGE_SEND, FALLBACK_RESPONSE_TEXT, JSON_RPC_ERRORS,
)
from .pending import PendingRequestTable
from .transport import RelayLink, LinkEvent, LinkEventType
from .wire import WireEvent

logger = logging.getLogger(__name__)


class RelayTransport:
    """
    Encrypted request/response messaging over untrusted relays.

    Usage:
        transport = RelayTransport(keypair, on_message=handler)
        await transport.connect(["wss://relay.damus.io"])

        result = await transport.send(peer_identity, "Hello!")
        print(result.response)

        await transport.disconnect()
    """

    def __init__(
        self,
        keypair: Keypair,
        on_message: Optional[MessageHandler] = None,
        config: Optional[Config] = None,
    ):
        self.keypair = keypair
        self.config = config or Config.default()

        self._handler = on_message
        self._links: List[RelayLink] = []
        self._inbox: Optional[asyncio.Queue] = None
        self._pending = PendingRequestTable()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._seen_events: "OrderedDict[str, int]" = OrderedDict()
        self._evicted_watermark = 0
        self._subscription_id = f"sub-{uuid.uuid4().hex[:16]}"

    @property
    def identity(self) -> str:
        """Our public key as hex."""
        return self.keypair.identity

    @property
    def is_connected(self) -> bool:
        return any(link.is_connected for link in self._links)

    @property
    def connected_relays(self) -> List[str]:
        return [link.url for link in self._links if link.is_connected]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_message(self, handler: MessageHandler) -> MessageHandler:
        """Register the handler for incoming requests. Usable as a decorator."""
        self._handler = handler
        return handler

    def subscription_filter(self, since: Optional[int] = None) -> Dict[str, Any]:
        """Relay filter matching events addressed to this identity."""
        if since is None:
            since = int(time.time()) - self.config.subscription_lookback
        return {
            "kinds": [self.config.event_kind],
            "#t": [self.identity],
            "since": since,
        }

    async def connect(self, relays: Optional[Iterable[str]] = None) -> None:
        """
        Connect to relays and start listening.

        Succeeds if at least one relay is reachable. With auto-reconnect
        enabled, relays that failed keep retrying in the background.

        Raises:
            NoRelaysAvailable: if no relay is configured or none could be reached
        """
        if self._links:
            raise RuntimeError("Transport is already connected")

        urls = list(relays if relays is not None else self.config.relays)
        if not urls:
            raise NoRelaysAvailable("No relays configured")

        self._inbox = asyncio.Queue(maxsize=self.config.queue_size)
        self._pending.start()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

        links = [
            RelayLink(
                url,
                events=self._inbox,
                auto_reconnect=self.config.auto_reconnect,
                reconnect_delay=self.config.reconnect_delay,
                publish_timeout=self.config.publish_timeout,
                connect_timeout=self.config.connect_timeout,
            )
            for url in urls
        ]

        subscription = self.subscription_filter()
        for link in links:
            await link.subscribe(self._subscription_id, subscription)

        results = await asyncio.gather(
            *(link.connect() for link in links),
            return_exceptions=True,
        )

        failed = []
        for link, result in zip(links, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to connect to {link.url}: {result}")
                failed.append(link)

        if len(failed) == len(links):
            for link in links:
                await link.disconnect()
            await self._stop_tasks()
            raise NoRelaysAvailable(f"Failed to connect to any of {len(links)} relay(s)")

        if not self.config.auto_reconnect:
            for link in failed:
                await link.disconnect()
            links = [link for link in links if link not in failed]

        self._links = links
        logger.info(
            f"Listening on {len(links) - len(failed)} relay(s) as {self.identity}"
        )

    async def disconnect(self) -> None:
        """
        Disconnect from all relays.

        Every outstanding send() fails with TransportClosed.
        """
        links, self._links = self._links, []
        await asyncio.gather(*(link.disconnect() for link in links), return_exceptions=True)

        rejected = self._pending.reject_all(lambda: TransportClosed("Transport disconnected"))
        if rejected:
            logger.info(f"Cancelled {rejected} pending request(s)")

        await self._stop_tasks()
        logger.info("Disconnected from all relays")

    async def send(
        self,
        recipient: str,
        text: str,
        data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        sender_name: Optional[str] = None,
    ) -> SendResult:
        """
        Send a message to a peer and wait for its response.

        Raises:
            InvalidIdentity: if `recipient` is not a hex public key
            NoConnectedRelays: if no relay link is connected (nothing is sent)
            TimedOut: if no response arrives within `timeout` seconds
            TransportClosed: if disconnect() is called while waiting
            RemoteError: if the peer answers with a JSON-RPC error
        """
        recipient = recipient.lower()
        recipient_key = hex_to_public_key(recipient)

        links = [link for link in self._links if link.is_connected]
        if not links:
            raise NoConnectedRelays("No connected relays")

        if timeout is None:
            timeout = self.config.send_timeout

        request = RpcRequest.message_send(
            text,
            data,
            sender=sender_name or self.config.agent_name,
        )
        event = self._seal(request.to_json(), recipient, recipient_key)

        pending = self._pending.register(request.id, recipient, timeout)
        for link in links:
            self._spawn(self._publish(link, event))

        try:
            return await pending.future
        finally:
            self._pending.discard(request.id)

    def get_status(self) -> dict:
        return {
            'identity': self.identity,
            'connected': self.is_connected,
            'relays': {link.url: link.state.value for link in self._links},
            'pending_requests': len(self._pending),
        }

    def _seal(self, plaintext: str, recipient: str, recipient_key: bytes) -> WireEvent:
        """Encrypt a payload for `recipient` and wrap it in a signed event."""
        envelope = encrypt(plaintext, self.keypair, recipient_key)
        return WireEvent.create(
            self.keypair,
            kind=self.config.event_kind,
            content=envelope.to_json(),
            tags=[["p", recipient], ["t", recipient]],
        )

    async def _publish(self, link: RelayLink, event: WireEvent) -> bool:
        try:
            await link.publish(event)
            return True
        except RelayError as e:
            logger.error(f"Failed to publish to {link.url}: {e}")
            return False

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _stop_tasks(self) -> None:
        tasks = list(self._tasks)
        if self._dispatch_task is not None:
            tasks.append(self._dispatch_task)
            self._dispatch_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self._pending.stop()
        self._inbox = None

    async def _dispatch_loop(self) -> None:
        """Single consumer of every link's events."""
        inbox = self._inbox
        while True:
            link_event = await inbox.get()
            try:
                self._handle_link_event(link_event)
            except Exception as e:
                logger.error(f"Error handling {link_event.type.value} from {link_event.relay_url}: {e}")

    def _handle_link_event(self, link_event: LinkEvent) -> None:
        if link_event.type == LinkEventType.EVENT:
            self._handle_event(link_event.event)
        elif link_event.type == LinkEventType.CONNECTED:
            logger.info(f"Connected to relay: {link_event.relay_url}")
        elif link_event.type == LinkEventType.DISCONNECTED:
            logger.warning(f"Disconnected from relay: {link_event.relay_url}")
        elif link_event.type == LinkEventType.ERROR:
            logger.error(f"Relay error ({link_event.relay_url}): {link_event.error}")

    def _handle_event(self, event: WireEvent) -> None:
        """Verify, decrypt and route one inbound event."""
        if event.id in self._seen_events:
            logger.debug(f"Ignoring duplicate event {event.id[:16]}")
            return
        if event.created_at <= self._evicted_watermark:
            logger.debug(f"Ignoring event {event.id[:16]} older than the dedupe window")
            return

        if not event.verify():
            logger.warning(f"Dropping event {event.id[:16]}: bad id or signature")
            return
        self._remember(event)

        try:
            envelope = Envelope.from_json(event.content)
            if envelope.sender_public_key != event.pubkey:
                raise InvalidSignature("Envelope sender does not match event author")
            payload = parse_payload(decrypt(envelope, self.keypair))
        except (EnvelopeError, InvalidPayload) as e:
            logger.warning(f"Dropping event {event.id[:16]} from {event.pubkey[:16]}...: {e}")
            return

        if isinstance(payload, RpcResponse):
            self._handle_response(payload, event.pubkey)
        else:
            self._spawn(self._handle_request(payload, event.pubkey))

    def _remember(self, event: WireEvent) -> None:
        # Events at or before an evicted timestamp can no longer be told apart from replays
        self._seen_events[event.id] = event.created_at
        while len(self._seen_events) > self.config.seen_event_cache_size:
            _, created_at = self._seen_events.popitem(last=False)
            self._evicted_watermark = max(self._evicted_watermark, created_at)

    def _handle_response(self, response: RpcResponse, sender: str) -> None:
        pending = self._pending.get(response.id)
        if pending is None:
            logger.debug(f"Ignoring response {response.id}: no pending request")
            return
        if pending.recipient != sender:
            logger.warning(f"Ignoring response {response.id} from unexpected sender {sender[:16]}...")
            return

        try:
            result = response.to_send_result(sender)
        except RemoteError as e:
            self._pending.reject(response.id, e)
        else:
            self._pending.resolve(response.id, result)

    async def _handle_request(self, request: RpcRequest, sender: str) -> None:
        """Run the application handler and publish its response to the sender."""
        if request.method != METHOD_MESSAGE_SEND:
            reply = RpcResponse.failure(
                request.id,
                JSON_RPC_ERRORS["METHOD_NOT_FOUND"],
                f"Method not found: {request.method}",
            )
        else:
            incoming = request.incoming_message()
            if incoming is None:
                reply = RpcResponse.failure(
                    request.id,
                    JSON_RPC_ERRORS["INVALID_PARAMS"],
                    "message/send requires a text part",
                )
            else:
                sender_info = SenderInfo(
                    name=request.sender_name or sender[:16] + "...",
                    public_key=sender,
                )
                response = await self._call_handler(incoming, sender_info)
                reply = RpcResponse.success(request.id, response.text, response.data)
                logger.info(f'Received message from {sender_info.name}: "{incoming.text[:50]}"')

        event = self._seal(reply.to_json(), sender, hex_to_public_key(sender))
        links = [link for link in self._links if link.is_connected]
        if not links:
            logger.error(f"Cannot answer {request.id}: no connected relays")
            return
        await asyncio.gather(*(self._publish(link, event) for link in links))

    async def _call_handler(self, incoming: IncomingMessage, sender: SenderInfo) -> MessageResponse:
        if self._handler is None:
            logger.warning("No message handler registered; sending acknowledgement")
            return MessageResponse(text=FALLBACK_RESPONSE_TEXT)

        try:
            response = self._handler(incoming, sender)
            if inspect.isawaitable(response):
                response = await response
        except Exception as e:
            logger.error(f"Handler error: {e}")
            return MessageResponse(text=FALLBACK_RESPONSE_TEXT)

        if isinstance(response, str):
            return MessageResponse(text=response)
        if isinstance(response, MessageResponse):
            return response

        logger.error(f"Handler returned unsupported {type(response).__name__}; sending acknowledgement")
        return MessageResponse(text=FALLBACK_RESPONSE_TEXT)
