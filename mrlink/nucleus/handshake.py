# mrlink/nucleus/handshake.py
import logging
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import ValidationError

from mrlink.nucleus import naming
from mrlink.nucleus.identity import RUNTIME, ConnectionState, EndpointIdentity
from mrlink.nucleus.messenger import Messenger
from mrlink.nucleus.protocol import Envelope, Hello, Registration
from mrlink.nucleus.registry import ServiceRecord, ServiceRegistry
from mrlink.nucleus.router import Router
from mrlink.nucleus.subscriptions import SubscriptionIndex

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], Any]

HELLO_METHOD = "getHelloResponse"
HELLO_ACK_METHOD = "onHelloResponse"
REGISTERED_TOPIC = "registered"
RELEASED_TOPIC = "released"


class HandshakeManager:
    """
    Drives the connection lifecycle of one endpoint.

    On open it says hello to the peer's runtime. The peer answers with its
    own ``getHelloResponse``, which carries its id and platform; from then on
    short names can be qualified, and the peer is asked to forward its
    ``registered`` and ``released`` broadcasts, which keep the registry in
    step. On close the registry and subscriptions are kept for the next
    connection.
    """

    def __init__(
        self,
        identity: EndpointIdentity,
        router: Router,
        subscriptions: SubscriptionIndex,
        registry: ServiceRegistry,
        messenger: Messenger,
    ):
        self.identity = identity
        self.router = router
        self.registry = registry
        self.messenger = messenger
        self._connectivity_callbacks: List[ConnectivityCallback] = []

        subscriptions.subscribe_by_method(HELLO_METHOD, self.on_hello_response)
        subscriptions.subscribe_by_method(HELLO_ACK_METHOD, self.on_hello_ack)
        logger.info(f"HandshakeManager initialized for endpoint '{identity.local_id}'.")

    # --- Connectivity subscribers ---

    def subscribe_connected(self, callback: ConnectivityCallback) -> None:
        self._connectivity_callbacks.append(callback)

    def unsubscribe_connected(self, callback: ConnectivityCallback) -> None:
        if callback in self._connectivity_callbacks:
            self._connectivity_callbacks.remove(callback)

    def _notify_connectivity(self, connected: bool) -> None:
        for callback in list(self._connectivity_callbacks):
            try:
                callback(connected)
            except Exception as e:
                logger.error(f"[Handshake] Connectivity callback failed: {e}", exc_info=True)

    # --- Transport events ---

    async def on_connecting(self) -> None:
        self.identity.transition(ConnectionState.CONNECTING)

    async def on_open(self) -> None:
        self.identity.transition(ConnectionState.AWAITING_HELLO)
        self._notify_connectivity(True)

        hello = Hello(id=self.identity.local_id, platform=self.identity.platform)
        # The peer's id is not known yet, so this one goes to the bare name.
        envelope = self.messenger.create_message(RUNTIME, HELLO_METHOD, ["fill-uuid", hello], resolve=False)
        envelope.sendingMethod = "sendTo"
        logger.info(f"[Handshake] Sending hello from '{self.identity.local_id}'.")
        await self.messenger.send_message(envelope)

    async def on_close(self, reason: Optional[str] = None) -> None:
        logger.warning(f"[Handshake] Connection closed ({reason or 'no reason given'}).")
        self._disconnected()

    async def on_error(self, error: BaseException) -> None:
        logger.error(f"[Handshake] Transport failure: {type(error).__name__}: {error}")
        self._disconnected()

    def _disconnected(self) -> None:
        # Subscribers only hear False after they have heard True.
        was_connected = self.identity.state in (ConnectionState.AWAITING_HELLO, ConnectionState.READY)
        self.identity.transition(ConnectionState.DISCONNECTED)
        if was_connected:
            self._notify_connectivity(False)

    # --- Inbound handshake ---

    def on_hello_response(self, envelope: Envelope) -> Optional[Awaitable[None]]:
        """
        Adopts the peer's identity and installs the registration callbacks
        before the router moves on to the next frame.

        Returns the coroutine that asks the peer for its ``registered`` and
        ``released`` broadcasts; the router schedules it.
        """
        try:
            hello = Hello.model_validate(envelope.arg(1))
        except ValidationError as e:
            logger.error(f"[Handshake] Malformed hello from '{envelope.sender}': {e}")
            return None

        previous = self.identity.remote_id
        if previous and previous != hello.id:
            self.router.remove_framework_callback(f"{naming.qualify(RUNTIME, previous)}.onRegistered")
            self.router.remove_framework_callback(f"{naming.qualify(RUNTIME, previous)}.onReleased")

        self.identity.set_remote(hello.id, hello.platform)
        self.identity.platform.mrlVersion = hello.platform.mrlVersion
        self.identity.transition(ConnectionState.READY)
        logger.info(f"[Handshake] Hello from '{hello.id}' ({hello.platform.lang}/{hello.platform.os}, mrl {hello.platform.mrlVersion}).")

        remote_runtime = self.identity.remote_runtime_name
        self.router.register_framework_callback(f"{remote_runtime}.onRegistered", self.on_registered)
        self.router.register_framework_callback(f"{remote_runtime}.onReleased", self.on_released)
        return self._listen_to_registry(remote_runtime)

    async def _listen_to_registry(self, remote_runtime: str) -> None:
        await self.messenger.add_listener(remote_runtime, REGISTERED_TOPIC)
        await self.messenger.add_listener(remote_runtime, RELEASED_TOPIC)

    def on_hello_ack(self, envelope: Envelope) -> None:
        logger.info(f"[Handshake] Hello acknowledged by '{envelope.sender}'.")

    # --- Registry maintenance ---

    def on_registered(self, envelope: Envelope) -> None:
        registration = Registration.model_validate(envelope.arg(0))
        record = ServiceRecord.from_registration(registration)
        self.registry.set_service_type(record.simple_type, registration.type)
        self.registry.register(record)

    def on_released(self, envelope: Envelope) -> None:
        service = envelope.arg(0)
        if service is None:
            logger.warning(f"[Handshake] Release from '{envelope.sender}' carried no service.")
            return
        self.registry.remove(self.identity.full_name(service))
