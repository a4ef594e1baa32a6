# mrlink/engine.py
import logging
from typing import Awaitable, Callable, List

from mrlink.electrons.base import BaseElectron
from mrlink.nucleus.protocol import Envelope

logger = logging.getLogger(__name__)


class PipelineEngine:
    """
    Runs the electron chain for each inbound envelope.

    It takes a list of Electrons and a final Nucleus handler (the Router),
    and chains them together.
    """

    def __init__(
        self,
        electrons: List[BaseElectron],
        nucleus_handler: Callable[[Envelope], Awaitable[None]],
    ):
        self._electrons = list(electrons)
        self._nucleus_handler = nucleus_handler
        logger.info(f"PipelineEngine initialized with {len(self._electrons)} electrons.")

    @property
    def electrons(self) -> List[BaseElectron]:
        return list(self._electrons)

    async def execute(self, envelope: Envelope) -> None:
        """
        Constructs and executes the chain of electron calls for a single envelope.
        """
        async def nucleus() -> None:
            await self._nucleus_handler(envelope)

        next_handler = nucleus

        # Wrap in reverse so each electron gets the *next* handler.
        for electron in reversed(self._electrons):
            def create_closure(current_electron, next_step):
                async def closure():
                    await current_electron.process(envelope, next_step)
                return closure

            next_handler = create_closure(electron, next_handler)

        await next_handler()
