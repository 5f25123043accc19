"""
Redis storage engine for ClipSync Relay.

Stores the ``pairings`` and ``clipboardItems`` tables and their secondary
indexes. Records are hashes. Indexes are lists of record ids with the most
recently inserted id at the head, except low-cardinality indexes shared by
many records, which are sets ordered by id on read.

Data Structure (every key is namespaced by ``key_prefix``):
- pairing:<pairingId> -> Pairing record (hash)
- clipboard:<itemId> -> Clipboard item (hash)
- pairings:by_macDeviceId:<macDeviceId> -> Pairing ids (list)
- pairings:by_androidDeviceId:<androidDeviceId> -> Pairing ids (list)
- pairings:by_status:<status> -> Pairing ids (set)
- clipboardItems:by_pairingId:<pairingId> -> Clipboard item ids (list)
- pairings:clock -> last createdAt handed to a pairing (sorted set, one member)
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import redis
from ulid import ULID

from clipsync_relay.errors import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAIRINGS = "pairings"
CLIPBOARD_ITEMS = "clipboardItems"

ASC = "asc"
DESC = "desc"

DEFAULT_TRANSACTION_ATTEMPTS = 50

CLOCK_MEMBER = "createdAt"


@dataclass(frozen=True)
class TableSpec:
    name: str
    key: str
    id_prefix: str
    indexes: Tuple[str, ...]
    int_fields: Tuple[str, ...] = ()
    # indexes kept as sets: O(1) removal, read back in id (ULID) order
    set_indexes: Tuple[str, ...] = ()


TABLES: Dict[str, TableSpec] = {
    PAIRINGS: TableSpec(
        name=PAIRINGS,
        key="pairing",
        id_prefix="p",
        indexes=("macDeviceId", "androidDeviceId", "status"),
        int_fields=("createdAt",),
        set_indexes=("status",),
    ),
    CLIPBOARD_ITEMS: TableSpec(
        name=CLIPBOARD_ITEMS,
        key="clipboard",
        id_prefix="i",
        indexes=("pairingId",),
        int_fields=("createdAt",),
    ),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class RedisManager:
    """
    Table style storage on top of Redis.

    All multi-key writes go through MULTI/EXEC. Services that need
    check-then-act semantics wrap their reads and writes in
    :meth:`transaction`, which retries the whole callable when a watched key
    changes underneath it.
    """

    def __init__(self, host: str = 'localhost', port: int = 6379, db: int = 0,
                 password: Optional[str] = None, ssl: bool = False,
                 key_prefix: str = "clipsync", client: Optional[redis.Redis] = None):
        """
        Initialize Redis connection.

        Args:
            host: Redis host
            port: Redis port
            db: Redis database number
            password: Redis password (if required)
            ssl: Connect with TLS
            key_prefix: Namespace prepended to every key
            client: Ready made client, used instead of opening a connection
        """
        self.key_prefix = key_prefix
        self.client = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            ssl=ssl,
            decode_responses=True
        )
        self._test_connection()

    def _test_connection(self):
        try:
            self.client.ping()
        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise StorageUnavailable(f"Redis is unreachable: {e}") from e

    # ==================== KEYS ====================

    @staticmethod
    def table(table: str) -> TableSpec:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table!r}") from None

    def _key(self, *parts: str) -> str:
        if self.key_prefix:
            return ":".join((self.key_prefix,) + parts)
        return ":".join(parts)

    def record_key(self, table: str, record_id: str) -> str:
        return self._key(self.table(table).key, record_id)

    def index_key(self, table: str, index: str, value: Any) -> str:
        spec = self.table(table)
        if index not in spec.indexes:
            raise ValueError(f"Table {table!r} has no index on {index!r}")
        return self._key(spec.name, f"by_{index}", str(_scalar(value)))

    @property
    def clock_key(self) -> str:
        return self._key(PAIRINGS, "clock")

    # ==================== IDENTIFIERS ====================

    def new_id(self, table: str) -> str:
        return f"{self.table(table).id_prefix}_{ULID()}"

    def normalize_id(self, table: str, raw: Any) -> Optional[str]:
        """
        Validate an untrusted identifier string.

        Returns the canonical id when ``raw`` is a well formed id of
        ``table``, None otherwise. Never raises.
        """
        spec = TABLES.get(table)
        if spec is None or not isinstance(raw, str):
            return None

        prefix, sep, body = raw.partition("_")
        if not sep or prefix != spec.id_prefix:
            return None
        try:
            parsed = ULID.from_str(body)
        except (ValueError, TypeError):
            return None
        return f"{prefix}_{parsed}"

    # ==================== RECORDS ====================

    def _encode(self, record: Dict[str, Any]) -> Dict[str, str]:
        data = {}
        for field, value in record.items():
            if field == "id":
                continue
            value = _scalar(value)
            data[field] = value if isinstance(value, str) else json.dumps(value)
        return data

    def _decode(self, spec: TableSpec, record_id: str, data: Dict[str, str]) -> Dict[str, Any]:
        record: Dict[str, Any] = {"id": record_id}
        for field, value in data.items():
            record[field] = int(value) if field in spec.int_fields else value
        return record

    def insert(self, table: str, record: Dict[str, Any], pipe: Optional[redis.client.Pipeline] = None) -> str:
        """
        Store a new record and index it.

        With ``pipe`` the writes are queued on a pipeline already in MULTI
        mode and only land when the caller executes it.

        Returns:
            str: The new record id
        """
        spec = self.table(table)
        missing = [index for index in spec.indexes if index not in record]
        if missing:
            raise ValueError(f"Record for {table!r} lacks indexed fields: {missing}")

        record_id = self.new_id(table)
        owned = pipe is None
        if owned:
            pipe = self.client.pipeline(transaction=True)

        pipe.hset(self.record_key(table, record_id), mapping=self._encode(record))
        for index in spec.indexes:
            key = self.index_key(table, index, record[index])
            if index in spec.set_indexes:
                pipe.sadd(key, record_id)
            else:
                pipe.lpush(key, record_id)

        if owned:
            pipe.execute()
        return record_id

    def get(self, table: str, record_id: Any, conn: Any = None) -> Optional[Dict[str, Any]]:
        """Point lookup. Missing or malformed ids yield None."""
        spec = self.table(table)
        record_id = self.normalize_id(table, record_id)
        if record_id is None:
            return None

        data = (self.client if conn is None else conn).hgetall(self.record_key(table, record_id))
        if not data:
            return None
        return self._decode(spec, record_id, data)

    def index_ids(self, table: str, index: str, value: Any, order: str = ASC,
                  limit: Optional[int] = None, conn: Any = None) -> List[str]:
        conn = self.client if conn is None else conn
        key = self.index_key(table, index, value)
        if order not in (ASC, DESC):
            raise ValueError(f"Unknown order: {order!r}")
        if limit is not None and limit <= 0:
            return []

        if index in self.table(table).set_indexes:
            ids = sorted(conn.smembers(key), reverse=order == DESC)
            return ids if limit is None else ids[:limit]

        if order == DESC:
            return list(conn.lrange(key, 0, -1 if limit is None else limit - 1))
        ids = conn.lrange(key, 0, -1) if limit is None else conn.lrange(key, -limit, -1)
        return list(reversed(ids))

    def query_by_index(self, table: str, index: str, value: Any, order: str = ASC,
                       limit: Optional[int] = None, conn: Any = None) -> List[Dict[str, Any]]:
        """Records whose ``index`` field equals ``value``, in insertion order."""
        records = []
        for record_id in self.index_ids(table, index, value, order=order, limit=limit, conn=conn):
            record = self.get(table, record_id, conn=conn)
            if record:
                records.append(record)
        return records

    def delete(self, table: str, record_id: Any, pipe: Optional[redis.client.Pipeline] = None,
               record: Optional[Dict[str, Any]] = None) -> bool:
        """
        Delete a record and its index entries. Idempotent.

        Inside a transaction the caller passes the ``record`` it already read,
        since a pipeline in MULTI mode cannot answer reads.

        Returns:
            bool: False when there was nothing to delete
        """
        spec = self.table(table)
        if record is None:
            record = self.get(table, record_id)
            if record is None:
                return False
        record_id = record["id"]

        owned = pipe is None
        if owned:
            pipe = self.client.pipeline(transaction=True)

        pipe.delete(self.record_key(table, record_id))
        for index in spec.indexes:
            if index not in record:
                continue
            key = self.index_key(table, index, record[index])
            if index in spec.set_indexes:
                pipe.srem(key, record_id)
            else:
                pipe.lrem(key, 0, record_id)

        if owned:
            pipe.execute()
        return True

    # ==================== TRANSACTIONS ====================

    def transaction(self, func: Callable[[redis.client.Pipeline], T], *watch_keys: str,
                    attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> T:
        """
        Run ``func`` as an optimistic transaction.

        ``func`` receives a pipeline watching ``watch_keys``. It may read
        through it (and watch more keys), must call ``pipe.multi()`` before
        queueing writes, and returns the value handed back to the caller.
        The whole callable is re-run if a watched key changed before EXEC.
        """
        with self.client.pipeline(transaction=True) as pipe:
            for attempt in range(1, attempts + 1):
                try:
                    if watch_keys:
                        pipe.watch(*watch_keys)
                    result = func(pipe)
                    pipe.execute()
                    return result
                except redis.WatchError:
                    logger.debug(f"Transaction conflict on {watch_keys}, attempt {attempt}")
                    pipe.reset()
        raise StorageUnavailable(f"Transaction gave up after {attempts} conflicting attempts")

    def next_timestamp(self, conn: Any = None) -> int:
        """createdAt for a new pairing: wall clock, never below the last committed one."""
        last = (self.client if conn is None else conn).zscore(self.clock_key, CLOCK_MEMBER)
        return max(now_ms(), int(last) if last is not None else 0)

    def set_clock(self, pipe: redis.client.Pipeline, timestamp: int) -> None:
        """
        Queue a clock advance to ``timestamp``.

        ``ZADD GT`` only ever raises the stored value, so the clock needs no
        WATCH: creates for unrelated devices committing in any order leave it
        at the highest timestamp handed out.
        """
        pipe.zadd(self.clock_key, {CLOCK_MEMBER: timestamp}, gt=True)

    # ==================== UTILITY OPERATIONS ====================

    def count(self, table: str, index: str, value: Any) -> int:
        key = self.index_key(table, index, value)
        if index in self.table(table).set_indexes:
            return self.client.scard(key)
        return self.client.llen(key)

    def health_check(self) -> Dict[str, Any]:
        """Get Redis health status."""
        return {
            "status": "healthy" if self.client.ping() else "unhealthy",
            "total_keys": self.client.dbsize(),
            "active_pairings": self.count(PAIRINGS, "status", "active"),
        }

    def flush_all(self) -> int:
        """Delete every key under this manager's prefix. Use with caution!"""
        pattern = self._key("*")
        deleted = 0
        for key in self.client.scan_iter(match=pattern):
            deleted += self.client.delete(key)
        return deleted

    def close(self):
        """Close Redis connection."""
        self.client.close()
