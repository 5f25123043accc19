import fakeredis
import pytest

from clipsync_relay.config import RedisConfig, RelayConfig
from clipsync_relay.database.redis_manager import RedisManager
from clipsync_relay.services.relay_service import RelayService


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def manager(redis_client):
    return RedisManager(client=redis_client, key_prefix="test")


@pytest.fixture
def relay_config():
    return RelayConfig(live_poll_interval=0.05)


@pytest.fixture
def relay(manager, relay_config):
    return RelayService(
        manager=manager,
        config=RedisConfig(key_prefix="test"),
        relay_config=relay_config,
    )


@pytest.fixture
def make_pairing(relay):
    """Factory fixture creating a pairing through the service."""

    def _make_pairing(
        android_id: str = "A1",
        mac_id: str = "M1",
        android_name: str = "Phone",
        mac_name: str = "Laptop",
    ) -> str:
        return relay.pairings.create(android_id, android_name, mac_id, mac_name)

    return _make_pairing
