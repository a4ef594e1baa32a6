# mrlink/gateway.py
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from mrlink.electrons.base import BaseElectron
from mrlink.electrons.logger import LoggerElectron
from mrlink.nucleus import naming
from mrlink.nucleus.codec import EnvelopeCodec
from mrlink.nucleus.connection import BaseTransport, WebSocketTransport
from mrlink.nucleus.correlation import CorrelationTable
from mrlink.nucleus.handshake import ConnectivityCallback, HandshakeManager
from mrlink.nucleus.identity import ConnectionState, EndpointIdentity
from mrlink.nucleus.messenger import Messenger
from mrlink.nucleus.protocol import Envelope, Platform
from mrlink.nucleus.registry import RegistryListener, ServiceRecord, ServiceRegistry
from mrlink.nucleus.router import Router
from mrlink.nucleus.subscriptions import Callback, SubscriptionIndex
from mrlink.proxy import ServiceProxy
from mrlink.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

ServiceRef = Union[str, Mapping[str, Any], ServiceRecord]


class ServiceGateway:
    """
    The local face of one remote process.

    A gateway owns one transport connection and everything that hangs off
    it: identity, registry, subscription index, correlation table and
    router. Nothing is shared between gateways, so several can run side by
    side in one process. This is the API the presentation layer uses.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[BaseTransport] = None,
        electrons: Optional[List[BaseElectron]] = None,
    ):
        self.config = config or default_settings
        self.identity = EndpointIdentity(
            local_id=self.config.LOCAL_ID,
            platform=Platform.local(self.config.MRL_VERSION),
        )
        self.registry = ServiceRegistry()
        self.subscriptions = SubscriptionIndex()
        self.correlation = CorrelationTable(ttl=self.config.CORRELATION_TTL)
        codec = EnvelopeCodec(heartbeat=self.config.HEARTBEAT)

        self.transport = transport or WebSocketTransport(
            self.config.REMOTE_URL,
            open_timeout=self.config.OPEN_TIMEOUT,
            reconnect=self.config.RECONNECT,
            reconnect_delay=self.config.RECONNECT_DELAY,
        )
        self.router = Router(
            self.identity,
            self.subscriptions,
            self.correlation,
            codec=codec,
            electrons=[LoggerElectron()] if electrons is None else electrons,
        )
        self.messenger = Messenger(
            self.identity,
            self.transport,
            self.correlation,
            codec=codec,
            poll_interval=self.config.BLOCKING_POLL_INTERVAL,
            retries=self.config.BLOCKING_RETRIES,
        )
        self.handshake = HandshakeManager(self.identity, self.router, self.subscriptions, self.registry, self.messenger)
        self._proxies: Dict[str, ServiceProxy] = {}

        self.transport.on_connecting = self.handshake.on_connecting
        self.transport.on_open = self.handshake.on_open
        self.transport.on_message = self._on_message
        self.transport.on_close = self.handshake.on_close
        self.transport.on_error = self.handshake.on_error
        logger.info(f"ServiceGateway '{self.identity.runtime_name}' initialized.")

    async def _on_message(self, raw: Union[str, bytes]) -> None:
        await self.router.dispatch(raw)

    # --- Connectivity ---

    async def connect(self) -> None:
        if self.identity.state != ConnectionState.DISCONNECTED:
            logger.debug(f"[Gateway] Already {self.identity.state.value}.")
            return
        await self.handshake.on_connecting()
        await self.transport.open()

    async def close(self) -> None:
        await self.transport.close()

    @property
    def state(self) -> ConnectionState:
        return self.identity.state

    def is_connected(self) -> bool:
        return self.identity.state in (ConnectionState.AWAITING_HELLO, ConnectionState.READY)

    def is_ready(self) -> bool:
        return self.identity.is_ready

    def subscribe_connected(self, callback: ConnectivityCallback) -> None:
        self.handshake.subscribe_connected(callback)

    def unsubscribe_connected(self, callback: ConnectivityCallback) -> None:
        self.handshake.unsubscribe_connected(callback)

    # --- Identity and names ---

    def get_id(self) -> str:
        return self.identity.local_id

    def get_remote_id(self) -> Optional[str]:
        return self.identity.remote_id

    def get_platform(self) -> Platform:
        return self.identity.platform

    def get_remote_platform(self) -> Optional[Platform]:
        return self.identity.remote_platform

    def get_full_name(self, service: ServiceRef, strict: bool = False) -> str:
        return self.identity.full_name(service, strict=strict)

    def _target(self, name: ServiceRef) -> str:
        # Plain names are resolved once, by the messenger.
        return name if isinstance(name, str) else self.get_full_name(name)

    @staticmethod
    def get_short_name(name: str) -> str:
        return naming.short_name(name)

    @staticmethod
    def get_simple_name(type_key: str) -> str:
        return naming.simple_name(type_key)

    # --- Registry ---

    def get_registry(self) -> Dict[str, ServiceRecord]:
        return self.registry.snapshot()

    def get_services(self) -> List[ServiceRecord]:
        return self.registry.records()

    def get_service(self, name: ServiceRef) -> Optional[ServiceRecord]:
        return self.registry.get(self.get_full_name(name))

    def update_state(self, state: Dict[str, Any]) -> ServiceRecord:
        """
        Replaces the record for the service ``state`` describes. A state
        without an id belongs to the remote process.
        """
        record = ServiceRecord.from_state(state, default_id=self.identity.remote_id)
        self.registry.register(record)
        return record

    def remove_service(self, name: ServiceRef) -> Optional[ServiceRecord]:
        return self.registry.remove(self.get_full_name(name))

    def get_services_from_interface(self, interface: str) -> List[ServiceRecord]:
        return self.registry.by_capability(interface)

    def get_possible_services(self) -> Dict[str, Any]:
        return self.registry.get_service_types()

    def set_possible_services(self, types: Dict[str, Any]) -> None:
        self.registry.set_service_types(types)

    def subscribe_to_registrations(self, callback: RegistryListener) -> None:
        self.registry.add_listener(on_added=callback)

    def subscribe_to_releases(self, callback: RegistryListener) -> None:
        self.registry.add_listener(on_removed=callback)

    # --- Local subscriptions ---

    def subscribe_to_service(self, callback: Callback, name: ServiceRef) -> None:
        self.subscriptions.subscribe_by_name(self.get_full_name(name), callback)

    def subscribe_to_method(self, callback: Callback, method: str) -> None:
        self.subscriptions.subscribe_by_method(method, callback)

    def subscribe_to_service_method(self, callback: Callback, name: ServiceRef, method: str) -> None:
        self.subscriptions.subscribe_by_name_method(self.get_full_name(name), method, callback)

    def unsubscribe_from_service(self, callback: Callback, name: ServiceRef) -> bool:
        return self.subscriptions.unsubscribe_by_name(self.get_full_name(name), callback)

    def unsubscribe_from_method(self, callback: Callback, method: str) -> bool:
        return self.subscriptions.unsubscribe_by_method(method, callback)

    def unsubscribe_from_service_method(self, callback: Callback, name: ServiceRef, method: str) -> bool:
        return self.subscriptions.unsubscribe_by_name_method(self.get_full_name(name), method, callback)

    # --- Remote subscriptions ---

    async def subscribe(self, name: ServiceRef, topic: str) -> Envelope:
        return await self.messenger.add_listener(self._target(name), topic)

    async def unsubscribe(self, name: ServiceRef, topic: str) -> Envelope:
        return await self.messenger.remove_listener(self._target(name), topic)

    # --- Sending ---

    def create_message(self, name: str, method: str, args: Optional[List[Any]] = None) -> Envelope:
        return self.messenger.create_message(name, method, args)

    async def send_raw(self, raw: str) -> None:
        await self.messenger.send_raw(raw)

    async def send_message(self, envelope: Envelope) -> None:
        await self.messenger.send_message(envelope)

    async def send_to(self, name: ServiceRef, method: str, *args: Any) -> Envelope:
        return await self.messenger.send_to(self._target(name), method, *args)

    async def send_to_blocking(self, name: ServiceRef, method: str, *args: Any) -> Envelope:
        return await self.messenger.send_to_blocking(self._target(name), method, *args)

    async def send_blocking_message(self, envelope: Envelope, retries: Optional[int] = None, interval: Optional[float] = None) -> Envelope:
        return await self.messenger.send_blocking_message(envelope, retries=retries, interval=interval)

    async def send_no_worky(self, user_id: str) -> Envelope:
        """Asks the remote runtime to upload its log for ``user_id``."""
        return await self.send_to(self.identity.remote_runtime_name, "noWorky", user_id)

    # --- Proxies ---

    async def create_proxy(self, name: ServiceRef) -> ServiceProxy:
        """
        Returns the proxy for ``name``, creating it on first use.

        A new proxy asks the service for its method map; ``await
        proxy.wait_ready()`` to wait for it.
        """
        full_name = self.get_full_name(name)
        proxy = self._proxies.get(full_name)
        if proxy is not None:
            return proxy

        proxy = ServiceProxy(self, full_name)
        self._proxies[full_name] = proxy
        self.subscribe_to_service_method(proxy.on_msg, full_name, "getMethodMap")
        await self.subscribe(full_name, "getMethodMap")
        await proxy.get_method_map()
        return proxy

    def get_proxy(self, name: ServiceRef) -> Optional[ServiceProxy]:
        return self._proxies.get(self.get_full_name(name))
