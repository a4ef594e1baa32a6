# mrlink/nucleus/errors.py
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from mrlink.nucleus.protocol import Envelope


class MrlinkError(Exception):
    """Base class for every error raised by the client runtime."""


class AddressingError(MrlinkError):
    """A short service name was used before the remote id was known."""

    def __init__(self, name: str):
        super().__init__(f"Cannot qualify '{name}': remote id is not known yet.")
        self.name = name


class DecodeError(MrlinkError):
    """An inbound frame could not be turned into an envelope."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class CorrelationTimeout(MrlinkError):
    """
    A blocking call ran out of retries before its reply arrived.

    The original envelope is kept for diagnostics; the caller decides whether
    to send it again.
    """

    def __init__(self, envelope: "Envelope", retries: int, interval: float):
        super().__init__(
            f"No reply for blocking message {envelope.msgId} "
            f"({envelope.name}.{envelope.method}) after {retries} polls of {interval}s."
        )
        self.envelope = envelope
        self.retries = retries
        self.interval = interval


class TransportError(MrlinkError):
    """The transport is not open, or failed while sending."""
