from __future__ import annotations

from typing import Optional

from clipsync_relay.config import RedisConfig, RelayConfig
from clipsync_relay.database.redis_manager import RedisManager
from clipsync_relay.services.clipboard_service import ClipboardRelayService
from clipsync_relay.services.pairing_service import PairingService


class RelayService:
    """Wires the storage manager to the pairing and clipboard services."""

    def __init__(
        self,
        manager: Optional[RedisManager] = None,
        config: Optional[RedisConfig] = None,
        relay_config: Optional[RelayConfig] = None,
    ) -> None:
        self.config = config or RedisConfig.from_env()
        self.relay_config = relay_config or RelayConfig.from_env()
        self.manager = manager or self.config.create_manager()
        self.pairings = PairingService(self.manager)
        self.clipboard = ClipboardRelayService(self.manager, self.relay_config)

    def health(self):
        return self.manager.health_check()

    def close(self) -> None:
        self.manager.close()

    def __enter__(self) -> "RelayService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
