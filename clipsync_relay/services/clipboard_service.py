from __future__ import annotations

import logging
from typing import List, Optional

import redis

from clipsync_relay.config import RelayConfig
from clipsync_relay.database.redis_manager import CLIPBOARD_ITEMS, DESC, PAIRINGS, RedisManager, now_ms
from clipsync_relay.errors import InvalidReference, NotFound, PayloadTooLarge, PreconditionFailed
from clipsync_relay.schema import ClipboardItem, ClipboardType, PairingStatus

logger = logging.getLogger(__name__)


class ClipboardRelayService:
    """
    Append, read back and purge encrypted clipboard items of one pairing.

    Reads treat an unusable pairing id as "no data". ``send`` reports it,
    since dropping a write silently would lose clipboard content.
    """

    def __init__(self, manager: RedisManager, config: Optional[RelayConfig] = None) -> None:
        self.manager = manager
        self.config = config or RelayConfig()

    def send(
        self,
        pairing_id: str,
        content: str,
        source_device_id: str,
        item_type: str = ClipboardType.TEXT.value,
    ) -> str:
        manager = self.manager
        normalized = manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            raise InvalidReference("Invalid pairing ID")

        size = len(content.encode("utf-8"))
        if size > self.config.max_content_bytes:
            raise PayloadTooLarge(
                f"Clipboard content is {size} bytes, limit is {self.config.max_content_bytes}")

        def _send(pipe: redis.client.Pipeline) -> str:
            pairing = manager.get(PAIRINGS, normalized, conn=pipe)
            if pairing is None:
                raise NotFound("Pairing not found")
            if pairing["status"] != PairingStatus.ACTIVE.value:
                raise PreconditionFailed("Pairing is not active")

            pipe.multi()
            return manager.insert(CLIPBOARD_ITEMS, {
                "pairingId": normalized,
                "content": content,
                "sourceDeviceId": source_device_id,
                "type": item_type,
                "createdAt": now_ms(),
            }, pipe=pipe)

        # Watching the pairing record keeps an unpair from slipping in
        # between the status check and the insert.
        item_id = manager.transaction(_send, manager.record_key(PAIRINGS, normalized))
        logger.debug(f"Clipboard item {item_id} ({item_type}, {size} bytes) stored for {normalized}")
        return item_id

    def get_latest(self, pairing_id: str) -> Optional[ClipboardItem]:
        normalized = self.manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            return None

        records = self.manager.query_by_index(
            CLIPBOARD_ITEMS, "pairingId", normalized, order=DESC, limit=1)
        return ClipboardItem.model_validate(records[0]) if records else None

    def get_history(self, pairing_id: str, limit: Optional[int] = None) -> List[ClipboardItem]:
        """Up to ``limit`` items, newest first. ``limit`` is clamped to the configured maximum."""
        normalized = self.manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            return []

        if limit is None:
            limit = self.config.history_default_limit
        limit = max(0, min(limit, self.config.history_max_limit))

        records = self.manager.query_by_index(
            CLIPBOARD_ITEMS, "pairingId", normalized, order=DESC, limit=limit)
        return [ClipboardItem.model_validate(record) for record in records]

    def clear(self, pairing_id: str) -> int:
        """Delete every item of a pairing, keeping the pairing. Returns the count deleted."""
        manager = self.manager
        normalized = manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            return 0

        def _clear(pipe: redis.client.Pipeline) -> int:
            items = manager.query_by_index(CLIPBOARD_ITEMS, "pairingId", normalized, conn=pipe)
            pipe.multi()
            for item in items:
                manager.delete(CLIPBOARD_ITEMS, item["id"], pipe=pipe, record=item)
            return len(items)

        deleted = manager.transaction(
            _clear, manager.index_key(CLIPBOARD_ITEMS, "pairingId", normalized))
        if deleted:
            logger.info(f"Cleared {deleted} clipboard items for {normalized}")
        return deleted
