# mrlink/nucleus/router.py
import asyncio
import inspect
import logging
from typing import Dict, Iterable, List, Optional, Set, Union

from mrlink.electrons.base import BaseElectron
from mrlink.engine import PipelineEngine
from mrlink.nucleus import naming
from mrlink.nucleus.codec import EnvelopeCodec
from mrlink.nucleus.correlation import CorrelationTable
from mrlink.nucleus.errors import DecodeError
from mrlink.nucleus.identity import EndpointIdentity
from mrlink.nucleus.protocol import Envelope
from mrlink.nucleus.subscriptions import Callback, SubscriptionIndex

logger = logging.getLogger(__name__)

# Handled by the more specific name+method index only.
METHOD_MAP_CALLBACK = "onMethodMap"


class Router:
    """
    The Nucleus Router. Every inbound frame ends here.

    Replies are parked in the correlation table. Everything else goes to
    the framework callbacks, then to by-name, by-name+method and by-method
    subscribers, in that order and in registration order within each group.
    A failing callback is logged and never stops delivery to the others.
    """

    def __init__(
        self,
        identity: EndpointIdentity,
        subscriptions: SubscriptionIndex,
        correlation: CorrelationTable,
        codec: Optional[EnvelopeCodec] = None,
        electrons: Optional[List[BaseElectron]] = None,
    ):
        self._identity = identity
        self._subscriptions = subscriptions
        self._correlation = correlation
        self._codec = codec or EnvelopeCodec()
        self._framework: Dict[str, Callback] = {}
        self._pipeline = PipelineEngine(electrons or [], self.route)
        self._pending: Set[asyncio.Future] = set()

    # --- Framework callbacks ---

    def register_framework_callback(self, key: str, callback: Callback) -> None:
        """Installs the endpoint's own handler for ``sender.method``."""
        self._framework[key] = callback

    def remove_framework_callback(self, key: str) -> None:
        self._framework.pop(key, None)

    def framework_keys(self) -> List[str]:
        return list(self._framework)

    # --- Dispatch ---

    async def dispatch(self, raw: Union[str, bytes]) -> Optional[Envelope]:
        """
        Decodes one frame and routes it through the electron pipeline.

        Returns the envelope, or ``None`` for heartbeats and frames that
        could not be decoded (those are logged and dropped).
        """
        try:
            envelope = self._codec.decode(raw)
        except DecodeError as e:
            logger.error(f"[Router] Dropping undecodable frame: {e} -- {raw!r:.200}")
            return None
        if envelope is None:
            return None

        try:
            await self._pipeline.execute(envelope)
        except Exception as e:
            logger.error(f"[Router] Error processing message {envelope.msgId}: {e}", exc_info=True)
        return envelope

    async def route(self, envelope: Envelope) -> None:
        if envelope.is_reply:
            self._correlation.put(envelope)
            return

        framework_key = f"{envelope.sender}.{envelope.method}"
        handler = self._framework.get(framework_key)
        if handler is not None:
            self._invoke((handler,), envelope, framework_key)

        sender = self._identity.full_name(envelope.sender)

        if naming.callback_name(envelope.method) != METHOD_MAP_CALLBACK:
            self._invoke(self._subscriptions.by_name(sender), envelope, sender)

        self._invoke(
            self._subscriptions.by_name_method(sender, envelope.method),
            envelope,
            naming.method_key(sender, envelope.method),
        )

        self._invoke(self._subscriptions.by_method(envelope.method), envelope, envelope.method)

    def _invoke(self, callbacks: Iterable[Callback], envelope: Envelope, key: str) -> None:
        for callback in callbacks:
            try:
                result = callback(envelope)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result), key)
            except Exception as e:
                logger.error(f"[Router] Callback for '{key}' failed on message {envelope.msgId}: {e}", exc_info=True)

    def _track(self, future: asyncio.Future, key: str) -> None:
        self._pending.add(future)

        def done(f: asyncio.Future) -> None:
            self._pending.discard(f)
            if not f.cancelled() and f.exception() is not None:
                logger.error(f"[Router] Async callback for '{key}' failed: {f.exception()}", exc_info=f.exception())

        future.add_done_callback(done)

    async def drain(self) -> None:
        """Waits for async callbacks scheduled by earlier dispatches."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
