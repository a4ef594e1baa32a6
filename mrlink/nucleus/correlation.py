# mrlink/nucleus/correlation.py
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from mrlink.nucleus.errors import CorrelationTimeout
from mrlink.nucleus.protocol import Envelope

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class CorrelationTable:
    """
    Holds ``R`` replies by ``msgId`` until a blocking caller takes them.

    A reply nobody takes (its caller timed out, or never waited) is dropped
    by ``sweep`` once it is older than ``ttl`` seconds. ``put`` sweeps as it
    goes, so the table stays bounded by the traffic of the last ``ttl``
    seconds. A ``ttl`` of ``None`` keeps entries forever.
    """

    def __init__(self, ttl: Optional[float] = 120.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[int, Tuple[float, Envelope]] = {}

    def put(self, envelope: Envelope) -> None:
        self.sweep()
        if envelope.msgId in self._entries:
            logger.warning(f"[Correlation] Duplicate reply for message {envelope.msgId}, keeping the latest.")
        self._entries[envelope.msgId] = (self._clock(), envelope)
        logger.debug(f"[Correlation] Stored reply for message {envelope.msgId}.")

    def take(self, msg_id: int) -> Optional[Envelope]:
        """Removes and returns the reply for ``msg_id``, if it has arrived."""
        entry = self._entries.pop(msg_id, None)
        return entry[1] if entry else None

    def peek(self, msg_id: int) -> Optional[Envelope]:
        entry = self._entries.get(msg_id)
        return entry[1] if entry else None

    def sweep(self) -> int:
        if self._ttl is None or not self._entries:
            return 0
        cutoff = self._clock() - self._ttl
        expired = [msg_id for msg_id, (arrived, _) in self._entries.items() if arrived < cutoff]
        for msg_id in expired:
            del self._entries[msg_id]
        if expired:
            logger.info(f"[Correlation] Dropped {len(expired)} unclaimed replies older than {self._ttl}s.")
        return len(expired)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ReplyPoller:
    """
    Waits for a reply by polling a ``CorrelationTable`` on a timer.

    Each poll sleeps ``interval`` seconds first, so a call that never gets a
    reply fails after ``retries * interval`` seconds and not before. The
    sleep function is injectable so the poller does not care which loop or
    scheduler drives it.
    """

    def __init__(self, table: CorrelationTable, interval: float = 1.0, retries: int = 20, sleep: Sleep = asyncio.sleep):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self._table = table
        self.interval = interval
        self.retries = retries
        self._sleep = sleep

    async def wait_for(self, envelope: Envelope) -> Envelope:
        for attempt in range(1, self.retries + 1):
            await self._sleep(self.interval)
            reply = self._table.take(envelope.msgId)
            if reply is not None:
                logger.debug(f"[Correlation] Reply for message {envelope.msgId} found on poll {attempt}/{self.retries}.")
                return reply
        logger.warning(f"[Correlation] Blocking message {envelope.msgId} to '{envelope.name}.{envelope.method}' timed out.")
        raise CorrelationTimeout(envelope, self.retries, self.interval)
