# mrlink/electrons/logger.py
import logging
from typing import Awaitable, Callable

from mrlink.electrons.base import BaseElectron
from mrlink.nucleus.protocol import Envelope

logger = logging.getLogger(__name__)


class LoggerElectron(BaseElectron):
    """
    Counts inbound envelopes and logs each one at debug level.
    """

    def __init__(self):
        self.message_count = 0

    async def process(
        self,
        envelope: Envelope,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        self.message_count += 1
        logger.debug(
            f"[LoggerElectron] #{self.message_count} {envelope.sender} --> "
            f"{envelope.name}.{envelope.method} (msgId: {envelope.msgId}, type: {envelope.msgType or '-'})"
        )
        await next_electron()
