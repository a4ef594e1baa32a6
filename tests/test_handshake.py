"""Tests for the hello exchange and registry maintenance."""

import json

import pytest

from fake_remote import connect_ready, envelope, hello, registration
from mrlink.nucleus.identity import ConnectionState


@pytest.mark.asyncio
class TestHello:
    """The two-phase identity exchange."""

    async def test_hello_is_sent_on_open(self, gateway, transport):
        states = []
        gateway.subscribe_connected(states.append)

        await gateway.connect()

        assert gateway.state == ConnectionState.AWAITING_HELLO
        assert states == [True]
        sent = transport.last()
        assert sent["name"] == "runtime"
        assert sent["sender"] == "runtime@E1"
        assert sent["method"] == "getHelloResponse"
        assert json.loads(sent["data"][0]) == "fill-uuid"
        hello_payload = json.loads(sent["data"][1])
        assert hello_payload["id"] == "E1"
        assert hello_payload["platform"]["lang"] == "python"

    async def test_hello_response_sets_remote_id(self, gateway, transport):
        await connect_ready(gateway, transport, "R9")

        assert gateway.get_remote_id() == "R9"
        assert gateway.get_remote_platform().lang == "java"
        assert gateway.get_platform().mrlVersion == "1.1.86"
        assert gateway.state == ConnectionState.READY
        assert gateway.is_ready()

    async def test_short_names_resolve_after_hello(self, gateway, transport):
        await connect_ready(gateway, transport, "R9")

        await gateway.send_to("logger", "info", "hello")

        assert transport.last()["name"] == "logger@R9"
        assert gateway.get_full_name("logger") == "logger@R9"

    async def test_registered_and_released_are_subscribed(self, gateway, transport):
        await connect_ready(gateway, transport, "R9")

        listeners = transport.find("addListener")
        assert [(m["name"], [json.loads(d) for d in m["data"]]) for m in listeners] == [
            ("runtime@R9", ["registered", "runtime@E1"]),
            ("runtime@R9", ["released", "runtime@E1"]),
        ]
        assert set(gateway.router.framework_keys()) == {"runtime@R9.onRegistered", "runtime@R9.onReleased"}

    async def test_registration_right_after_hello_is_kept(self, gateway, transport):
        await gateway.connect()
        await transport.deliver(hello("R9"))
        await transport.deliver(registration("servo1"))

        assert gateway.get_service("servo1@R9") is not None
        await gateway.router.drain()
        assert [json.loads(m["data"][0]) for m in transport.find("addListener")] == ["registered", "released"]

    async def test_new_remote_id_replaces_framework_callbacks(self, gateway, transport):
        await connect_ready(gateway, transport, "R9")
        await transport.deliver(hello("R10"))
        await gateway.router.drain()

        assert gateway.get_remote_id() == "R10"
        assert set(gateway.router.framework_keys()) == {"runtime@R10.onRegistered", "runtime@R10.onReleased"}

    async def test_malformed_hello_is_ignored(self, gateway, transport):
        await gateway.connect()
        await transport.deliver(envelope("runtime@R9", "getHelloResponse", "fill-uuid", {"platform": {}}))
        await gateway.router.drain()

        assert gateway.get_remote_id() is None
        assert gateway.state == ConnectionState.AWAITING_HELLO


@pytest.mark.asyncio
class TestRegistration:
    """Registration and release broadcasts from the remote runtime."""

    async def test_registration_populates_registry(self, gateway, transport):
        await connect_ready(gateway, transport)
        added = []
        gateway.subscribe_to_registrations(added.append)

        await transport.deliver(registration("servo1", pos=90))

        service = gateway.get_service("servo1@R9")
        assert service.state["pos"] == 90
        assert service.simple_type == "Servo"
        assert "Servo" in gateway.get_possible_services()
        assert [r.full_name for r in added] == ["servo1@R9"]

    async def test_registration_replaces_previous_state(self, gateway, transport):
        await connect_ready(gateway, transport)
        await transport.deliver(registration("servo1", pos=90, speed=3))
        await transport.deliver(registration("servo1", pos=10))

        assert gateway.get_service("servo1").state == {"name": "servo1", "id": "R9",
                                                       "typeKey": "org.myrobotlab.service.Servo", "pos": 10}

    async def test_release_removes_service(self, gateway, transport):
        await connect_ready(gateway, transport)
        released = []
        gateway.subscribe_to_releases(released.append)
        await transport.deliver(registration("motor", type_key="org.myrobotlab.service.Motor"))
        assert gateway.get_service("motor@R9") is not None

        await transport.deliver(envelope("runtime@R9", "onReleased", "motor@R9"))

        assert gateway.get_service("motor@R9") is None
        assert [r.full_name for r in released] == ["motor@R9"]

    async def test_release_with_service_object(self, gateway, transport):
        await connect_ready(gateway, transport)
        await transport.deliver(registration("motor"))
        await transport.deliver(envelope("runtime@R9", "onReleased", {"name": "motor", "id": "R9"}))
        assert gateway.get_service("motor@R9") is None

    async def test_registration_from_unknown_runtime_is_not_applied(self, gateway, transport):
        await connect_ready(gateway, transport)
        await transport.deliver(registration("servo1", remote_id="X1") | {"sender": "runtime@X1"})
        assert gateway.get_service("servo1@X1") is None


@pytest.mark.asyncio
class TestDisconnect:
    """Closing keeps local state for the next connection."""

    async def test_close_notifies_and_keeps_state(self, gateway, transport):
        states = []
        gateway.subscribe_connected(states.append)
        await connect_ready(gateway, transport)
        await transport.deliver(registration("servo1"))
        calls = []
        gateway.subscribe_to_service(calls.append, "servo1")

        await transport.drop()

        assert states == [True, False]
        assert gateway.state == ConnectionState.DISCONNECTED
        assert not gateway.is_connected()
        assert gateway.get_service("servo1@R9") is not None

        await connect_ready(gateway, transport)
        await transport.deliver(envelope("servo1@R9", "onStatus", "ok"))
        assert len(calls) == 1
        assert states == [True, False, True]

    async def test_transport_error_marks_disconnected(self, gateway, transport):
        states = []
        gateway.subscribe_connected(states.append)
        await connect_ready(gateway, transport)

        await gateway.handshake.on_error(OSError("unreachable"))

        assert gateway.state == ConnectionState.DISCONNECTED
        assert states == [True, False]

    async def test_unsubscribed_connectivity_callback(self, gateway, transport):
        states = []
        gateway.subscribe_connected(states.append)
        gateway.unsubscribe_connected(states.append)
        await gateway.connect()
        assert states == []

    async def test_error_then_close_notifies_once(self, gateway, transport):
        states = []
        gateway.subscribe_connected(states.append)
        await connect_ready(gateway, transport)

        await gateway.handshake.on_error(OSError("reset"))
        await gateway.handshake.on_close("reset")

        assert states == [True, False]

    async def test_failed_attempt_does_not_report_disconnect(self, gateway):
        states = []
        gateway.subscribe_connected(states.append)

        await gateway.handshake.on_connecting()
        await gateway.handshake.on_error(OSError("refused"))

        assert gateway.state == ConnectionState.DISCONNECTED
        assert states == []

    async def test_every_attempt_passes_through_connecting(self, gateway, transport, monkeypatch):
        await connect_ready(gateway, transport)
        await transport.drop()
        seen = []
        transition = gateway.identity.transition

        def record(state):
            seen.append(state)
            transition(state)

        monkeypatch.setattr(gateway.identity, "transition", record)
        await transport.open()
        await transport.deliver(hello("R9"))
        await gateway.router.drain()

        assert seen == [ConnectionState.CONNECTING, ConnectionState.AWAITING_HELLO, ConnectionState.READY]
