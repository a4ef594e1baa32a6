# mrlink/nucleus/identity.py
import enum
import logging
import secrets
from typing import Any, Mapping, Optional, Union

from mrlink.nucleus import naming
from mrlink.nucleus.errors import AddressingError
from mrlink.nucleus.protocol import Platform

logger = logging.getLogger(__name__)

RUNTIME = "runtime"


def generate_id() -> str:
    """Generates a local endpoint id, e.g. ``python-client-4821-0937``."""
    return f"python-client-{secrets.randbelow(10000):04d}-{secrets.randbelow(10000):04d}"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    READY = "ready"


class EndpointIdentity:
    """
    Holds this endpoint's id, the peer's id once the hello has been exchanged,
    and the connection state.

    The local id is fixed at construction. The remote id is what every short
    service name is qualified with.
    """

    def __init__(self, local_id: Optional[str] = None, platform: Optional[Platform] = None):
        self._local_id = local_id or generate_id()
        self.platform = platform or Platform.local()
        self.remote_id: Optional[str] = None
        self.remote_platform: Optional[Platform] = None
        self.state = ConnectionState.DISCONNECTED

    @property
    def local_id(self) -> str:
        return self._local_id

    @property
    def runtime_name(self) -> str:
        """The full name of this endpoint's own runtime service."""
        return naming.qualify(RUNTIME, self._local_id)

    @property
    def remote_runtime_name(self) -> str:
        return self.full_name(RUNTIME)

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    def set_remote(self, remote_id: str, remote_platform: Optional[Platform] = None) -> None:
        if self.remote_id and self.remote_id != remote_id:
            logger.warning(f"[Identity] Remote id changed from '{self.remote_id}' to '{remote_id}'.")
        self.remote_id = remote_id
        self.remote_platform = remote_platform

    def transition(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info(f"[Identity] {self.state.value} -> {state.value}")
            self.state = state

    def full_name(self, service: Union[str, Mapping[str, Any], Any], strict: bool = False) -> str:
        """
        Normalises a service reference to ``name@id``.

        ``service`` may be a name or anything with ``name`` and ``id``
        (a mapping or an object). A short name is qualified with the remote
        id. Before the remote id is known the short name is returned as is
        and an addressing error is logged, or raised when ``strict`` is set.
        """
        if isinstance(service, str):
            if naming.is_full_name(service):
                return service
            if self.remote_id is None:
                if strict:
                    raise AddressingError(service)
                logger.error(f"[Identity] Name '{service}' has no id and the remote id is unknown. Sending it unqualified.")
                return service
            return naming.qualify(service, self.remote_id)

        if isinstance(service, Mapping):
            name, service_id = service.get("name"), service.get("id")
        else:
            name, service_id = getattr(service, "name", None), getattr(service, "id", None)
        if not name:
            raise ValueError(f"Cannot derive a service name from {service!r}")
        if service_id is None:
            return self.full_name(name, strict=strict)
        return naming.qualify(name, service_id)
