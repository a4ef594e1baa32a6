# mrlink/proxy.py
import asyncio
import logging
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

from mrlink.nucleus import naming
from mrlink.nucleus.protocol import Envelope
from mrlink.nucleus.registry import ServiceRecord

if TYPE_CHECKING:
    from mrlink.gateway import ServiceGateway

logger = logging.getLogger(__name__)

FRAMEWORK_TOPICS = ("publishStatus", "publishState", "getMethodMap")


class ServiceProxy:
    """
    The local stand-in for one remote service.

    Calls are sent to the service by name. Once the service has announced
    its method map, every remote method is also available as a coroutine
    function on ``proxy.msg``, e.g. ``await proxy.msg.moveTo(90)``.
    """

    def __init__(self, gateway: "ServiceGateway", name: str):
        self.name = name
        self._gateway = gateway
        self.method_map: Dict[str, Any] = {}
        self.msg = SimpleNamespace()
        self._ready = asyncio.Event()

    def __repr__(self) -> str:
        return f"ServiceProxy({self.name!r}, methods={len(self.method_map)})"

    @property
    def state(self) -> Optional[ServiceRecord]:
        """The registry's current record for this service (read only)."""
        return self._gateway.get_service(self.name)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self, timeout: Optional[float] = None) -> "ServiceProxy":
        """Waits until the method map has arrived."""
        await asyncio.wait_for(self._ready.wait(), timeout)
        return self

    # --- Sending ---

    async def send(self, method: str, *args: Any) -> Envelope:
        return await self._gateway.send_to(self.name, method, *args)

    async def send_blocking(self, method: str, *args: Any) -> Envelope:
        return await self._gateway.send_to_blocking(self.name, method, *args)

    async def send_to(self, to_name: str, method: str, *args: Any) -> Envelope:
        return await self._gateway.send_to(to_name, method, *args)

    async def send_args(self, method: str, values: Union[Mapping[str, Any], Sequence[Any]]) -> Envelope:
        """Sends ``method`` with positional arguments taken from ``values`` in order."""
        args = list(values.values()) if isinstance(values, Mapping) else list(values)
        return await self.send(method, *args)

    # --- Remote listeners ---

    async def subscribe(self, topic: str) -> None:
        """Asks the service to forward ``topic`` invocations to this endpoint."""
        await self._gateway.subscribe(self.name, topic)

    async def unsubscribe(self, topic: str) -> None:
        await self._gateway.unsubscribe(self.name, topic)

    async def subscribe_framework(self, callback: Callable[[Envelope], Any]) -> None:
        """
        Registers the standard status, state and method map subscriptions,
        asks for a state broadcast, and routes every message from the
        service to ``callback``.
        """
        for topic in FRAMEWORK_TOPICS:
            await self._gateway.subscribe(self.name, topic)
        self._gateway.subscribe_to_service_method(self.on_msg, self.name, "publishState")
        await self._gateway.send_to(self.name, "broadcastState")
        self._gateway.subscribe_to_service(callback, self.name)
        await self.get_method_map()

    async def get_method_map(self) -> Envelope:
        return await self.send("getMethodMap")

    # --- Framework callbacks ---

    def on_msg(self, envelope: Envelope) -> None:
        callback = naming.callback_name(envelope.method)
        if callback == "onState":
            state = envelope.arg(0)
            if isinstance(state, dict):
                self._gateway.update_state(state)
            else:
                logger.warning(f"[Proxy] '{self.name}' sent a state that is not an object.")
        elif callback == "onMethodMap":
            method_map = envelope.arg(0)
            if not isinstance(method_map, dict):
                logger.error(f"[Proxy] '{self.name}' sent a method map that is not an object.")
                return
            self._build_methods(method_map)
            self._ready.set()
        else:
            logger.warning(f"[Proxy] Unhandled framework method '{envelope.method}' from '{envelope.sender}'.")

    def _build_methods(self, method_map: Dict[str, Any]) -> None:
        self.method_map = method_map
        self.msg = SimpleNamespace()
        for key, description in method_map.items():
            if not isinstance(description, dict):
                description = {}
            method = description.get("name") or key
            parameters = description.get("parameterTypeNames") or []
            setattr(self.msg, method, self._make_method(method, len(parameters)))
        logger.info(f"[Proxy] '{self.name}' exposes {len(method_map)} methods.")

    def _make_method(self, method: str, arity: int) -> Callable[..., Awaitable[Envelope]]:
        async def remote_method(*args: Any) -> Envelope:
            if len(args) != arity:
                logger.warning(f"[Proxy] {self.name}.{method} takes {arity} arguments, sending {len(args)}.")
            return await self.send_args(method, args)

        remote_method.__name__ = method
        remote_method.__qualname__ = f"{self.name}.{method}"
        remote_method.arity = arity  # type: ignore[attr-defined]
        return remote_method
