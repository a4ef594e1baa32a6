# mrlink/electrons/base.py
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from mrlink.nucleus.protocol import Envelope


class BaseElectron(ABC):
    """
    Abstract base class for all "Electrons" (inbound middleware).

    An Electron sees every decoded envelope before the Router does. It can
    inspect or annotate the envelope, or halt it.
    """

    @abstractmethod
    async def process(
        self,
        envelope: Envelope,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Processes an inbound envelope.

        Args:
            envelope: The decoded envelope.
            next_electron: Invokes the next electron, or the Router after the
                           last one. If it is not awaited the envelope is
                           dropped.
        """
        pass
