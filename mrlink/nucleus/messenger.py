# mrlink/nucleus/messenger.py
import logging
from typing import Any, Optional, Sequence

from mrlink.nucleus.codec import EnvelopeCodec
from mrlink.nucleus.connection import BaseTransport
from mrlink.nucleus.correlation import CorrelationTable, ReplyPoller
from mrlink.nucleus.identity import EndpointIdentity
from mrlink.nucleus.protocol import BLOCKING, Envelope, MessageIdGenerator, encode_args

logger = logging.getLogger(__name__)


class Messenger:
    """
    The outbound half of the endpoint: builds envelopes, encodes them and
    hands them to the transport. Blocking sends also wait on the
    correlation table for their reply.
    """

    def __init__(
        self,
        identity: EndpointIdentity,
        transport: BaseTransport,
        correlation: CorrelationTable,
        codec: Optional[EnvelopeCodec] = None,
        poll_interval: float = 1.0,
        retries: int = 20,
    ):
        self._identity = identity
        self._transport = transport
        self._correlation = correlation
        self._codec = codec or EnvelopeCodec()
        self._ids = MessageIdGenerator()
        self.poll_interval = poll_interval
        self.retries = retries

    def next_id(self) -> int:
        return self._ids.next_id()

    def create_message(self, name: str, method: str, args: Optional[Sequence[Any]] = None, resolve: bool = True) -> Envelope:
        """
        Builds an envelope from this endpoint's runtime to ``name.method``.

        ``name`` is qualified with the remote id unless ``resolve`` is off.
        No ``data`` is attached when ``args`` is empty or is exactly ``[None]``.
        """
        envelope = Envelope(
            msgId=self._ids.next_id(),
            name=self._identity.full_name(name) if resolve else name,
            sender=self._identity.runtime_name,
            method=method,
        )
        if args and not (len(args) == 1 and args[0] is None):
            envelope.data = encode_args(args)
        return envelope

    async def send_raw(self, raw: str) -> None:
        await self._transport.send(raw)

    async def send_message(self, envelope: Envelope) -> None:
        logger.debug(f"[Messenger] {envelope.sender} --> {envelope.name}.{envelope.method} (msgId: {envelope.msgId})")
        await self.send_raw(self._codec.encode(envelope))

    async def send_to(self, name: str, method: str, *args: Any) -> Envelope:
        """Fire-and-forget call of ``method`` on ``name``. Returns the envelope sent."""
        envelope = self.create_message(name, method, args)
        envelope.sendingMethod = "sendTo"
        await self.send_message(envelope)
        return envelope

    async def send_blocking_message(
        self,
        envelope: Envelope,
        retries: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> Envelope:
        """
        Sends ``envelope`` as a blocking call and waits for the ``R`` reply
        with the same ``msgId``.

        Raises ``CorrelationTimeout`` when the retry budget runs out. The
        call is not repeated; that is up to the caller.
        """
        envelope.msgId = self._ids.next_id()
        envelope.msgType = BLOCKING
        if envelope.sendingMethod is None:
            envelope.sendingMethod = "sendToBlocking"
        poller = ReplyPoller(
            self._correlation,
            interval=self.poll_interval if interval is None else interval,
            retries=self.retries if retries is None else retries,
        )
        await self.send_message(envelope)
        return await poller.wait_for(envelope)

    async def send_to_blocking(self, name: str, method: str, *args: Any) -> Envelope:
        return await self.send_blocking_message(self.create_message(name, method, args))

    async def add_listener(self, name: str, topic: str) -> Envelope:
        """Asks ``name`` to forward ``topic`` invocations to this endpoint's runtime."""
        return await self.send_to(name, "addListener", topic, self._identity.runtime_name)

    async def remove_listener(self, name: str, topic: str) -> Envelope:
        return await self.send_to(name, "removeListener", topic, self._identity.runtime_name)
