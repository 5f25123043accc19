from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import redis

from clipsync_relay.database.redis_manager import ASC, CLIPBOARD_ITEMS, DESC, PAIRINGS, RedisManager
from clipsync_relay.errors import InvalidReference
from clipsync_relay.schema import Pairing, PairingStatus

logger = logging.getLogger(__name__)


def cascade_delete(
    manager: RedisManager,
    pipe: redis.client.Pipeline,
    pairing: Dict[str, Any],
    items: List[Dict[str, Any]],
) -> None:
    """Queue deletion of a pairing's clipboard items, then of the pairing."""
    for item in items:
        manager.delete(CLIPBOARD_ITEMS, item["id"], pipe=pipe, record=item)
    manager.delete(PAIRINGS, pairing["id"], pipe=pipe, record=pairing)


class PairingService:
    """Creates, finds and removes pairings between one android and one mac device."""

    def __init__(self, manager: RedisManager) -> None:
        self.manager = manager

    def create(
        self,
        android_device_id: str,
        android_device_name: str,
        mac_device_id: str,
        mac_device_name: str,
    ) -> str:
        """
        Pair two devices, replacing any pairing either of them already has.

        Superseded pairings are deleted together with their clipboard items.
        The lookup, the cascade and the insert commit as one transaction, so
        two racing calls for the same device cannot both leave a pairing.
        Only the two device indexes are watched: creates for unrelated
        devices never conflict.

        Returns:
            str: The new pairing id
        """
        manager = self.manager

        def _create(pipe: redis.client.Pipeline):
            superseded: Dict[str, Dict[str, Any]] = {}
            for index, value in (("androidDeviceId", android_device_id), ("macDeviceId", mac_device_id)):
                for record in manager.query_by_index(PAIRINGS, index, value, conn=pipe):
                    superseded[record["id"]] = record

            items: Dict[str, List[Dict[str, Any]]] = {}
            for pairing_id in superseded:
                pipe.watch(manager.index_key(CLIPBOARD_ITEMS, "pairingId", pairing_id))
                items[pairing_id] = manager.query_by_index(
                    CLIPBOARD_ITEMS, "pairingId", pairing_id, conn=pipe)

            created_at = manager.next_timestamp(conn=pipe)

            pipe.multi()
            for pairing_id, record in superseded.items():
                cascade_delete(manager, pipe, record, items[pairing_id])
            new_id = manager.insert(PAIRINGS, {
                "androidDeviceId": android_device_id,
                "androidDeviceName": android_device_name,
                "macDeviceId": mac_device_id,
                "macDeviceName": mac_device_name,
                "status": PairingStatus.ACTIVE,
                "createdAt": created_at,
            }, pipe=pipe)
            manager.set_clock(pipe, created_at)
            return new_id, list(superseded)

        pairing_id, superseded = manager.transaction(
            _create,
            manager.index_key(PAIRINGS, "androidDeviceId", android_device_id),
            manager.index_key(PAIRINGS, "macDeviceId", mac_device_id),
        )

        for old_id in superseded:
            logger.info(f"Pairing {old_id} superseded by {pairing_id}")
        logger.info(f"Pairing created: {pairing_id}")
        return pairing_id

    def get(self, pairing_id: str) -> Optional[Pairing]:
        """Typed lookup: a malformed id is a caller error, an unknown one is None."""
        normalized = self.manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            raise InvalidReference(f"Not a pairing id: {pairing_id!r}")
        return self._load(normalized)

    def get_by_id_string(self, pairing_id: str) -> Optional[Pairing]:
        normalized = self.manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            return None
        return self._load(normalized)

    def get_by_mac_id(self, mac_device_id: str) -> Optional[Pairing]:
        # Several active pairings for one mac only arise from foreign writes;
        # which of them is returned is then unspecified.
        for record in self.manager.query_by_index(PAIRINGS, "macDeviceId", mac_device_id, order=ASC):
            pairing = Pairing.model_validate(record)
            if pairing.is_active:
                return pairing
        return None

    def watch_for_pairing(self, mac_device_id: str, since_timestamp: float) -> Optional[Pairing]:
        """
        Newest active pairing of a mac created at or after ``since_timestamp``.

        A desktop showing a pairing code polls this with the time it started
        waiting until the mobile side has called :meth:`create`.
        """
        candidates = [
            Pairing.model_validate(record)
            for record in self.manager.query_by_index(PAIRINGS, "macDeviceId", mac_device_id, order=DESC)
        ]
        candidates = [p for p in candidates if p.is_active and p.createdAt >= since_timestamp]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.createdAt)

    def exists(self, pairing_id: str) -> bool:
        pairing = self.get_by_id_string(pairing_id)
        return pairing is not None and pairing.is_active

    def remove(self, pairing_id: str) -> None:
        """Unpair. Unknown, malformed or already removed ids are ignored."""
        manager = self.manager
        normalized = manager.normalize_id(PAIRINGS, pairing_id)
        if normalized is None:
            return

        def _remove(pipe: redis.client.Pipeline) -> bool:
            record = manager.get(PAIRINGS, normalized, conn=pipe)
            if record is None:
                return False
            items = manager.query_by_index(CLIPBOARD_ITEMS, "pairingId", normalized, conn=pipe)
            pipe.multi()
            cascade_delete(manager, pipe, record, items)
            return True

        removed = manager.transaction(
            _remove,
            manager.record_key(PAIRINGS, normalized),
            manager.index_key(CLIPBOARD_ITEMS, "pairingId", normalized),
        )
        if removed:
            logger.info(f"Pairing removed: {normalized}")

    def _load(self, pairing_id: str) -> Optional[Pairing]:
        record = self.manager.get(PAIRINGS, pairing_id)
        return Pairing.model_validate(record) if record else None
