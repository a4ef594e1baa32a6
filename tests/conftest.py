import pytest

from fake_remote import FakeTransport
from mrlink.gateway import ServiceGateway
from mrlink.settings import Settings


@pytest.fixture
def config() -> Settings:
    return Settings(
        LOCAL_ID="E1",
        REMOTE_URL="ws://127.0.0.1:1/api/messages",
        RECONNECT=False,
        BLOCKING_POLL_INTERVAL=0.01,
        BLOCKING_RETRIES=20,
        CORRELATION_TTL=60.0,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gateway(config: Settings, transport: FakeTransport) -> ServiceGateway:
    return ServiceGateway(config, transport=transport)
