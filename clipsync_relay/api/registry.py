"""
Named functions exposed to clients.

Every operation is addressable as ``<module>.<function>`` with a fixed
argument schema, validated with pydantic before the service is called.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Type

import redis
from pydantic import BaseModel, ValidationError

from clipsync_relay.errors import InvalidArguments, NotFound, StorageUnavailable
from clipsync_relay.schema import (
    CreatePairingArgs,
    HistoryArgs,
    MacDeviceArgs,
    PairingIdArgs,
    SendClipboardArgs,
    WatchForPairingArgs,
)
from clipsync_relay.services.relay_service import RelayService

logger = logging.getLogger(__name__)

QUERY = "query"
MUTATION = "mutation"


@dataclass(frozen=True)
class RelayFunction:
    name: str
    kind: str
    args_model: Type[BaseModel]
    handler: Callable[[RelayService, Any], Any]


FUNCTIONS: Dict[str, RelayFunction] = {f.name: f for f in (
    RelayFunction(
        "pairings.create", MUTATION, CreatePairingArgs,
        lambda relay, a: relay.pairings.create(
            a.androidDeviceId, a.androidDeviceName, a.macDeviceId, a.macDeviceName),
    ),
    RelayFunction(
        "pairings.get", QUERY, PairingIdArgs,
        lambda relay, a: relay.pairings.get(a.pairingId),
    ),
    RelayFunction(
        "pairings.getByIdString", QUERY, PairingIdArgs,
        lambda relay, a: relay.pairings.get_by_id_string(a.pairingId),
    ),
    RelayFunction(
        "pairings.getByMacId", QUERY, MacDeviceArgs,
        lambda relay, a: relay.pairings.get_by_mac_id(a.macDeviceId),
    ),
    RelayFunction(
        "pairings.watchForPairing", QUERY, WatchForPairingArgs,
        lambda relay, a: relay.pairings.watch_for_pairing(a.macDeviceId, a.sinceTimestamp),
    ),
    RelayFunction(
        "pairings.exists", QUERY, PairingIdArgs,
        lambda relay, a: relay.pairings.exists(a.pairingId),
    ),
    RelayFunction(
        "pairings.remove", MUTATION, PairingIdArgs,
        lambda relay, a: relay.pairings.remove(a.pairingId),
    ),
    RelayFunction(
        "clipboard.send", MUTATION, SendClipboardArgs,
        lambda relay, a: relay.clipboard.send(a.pairingId, a.content, a.sourceDeviceId, a.type),
    ),
    RelayFunction(
        "clipboard.getLatest", QUERY, PairingIdArgs,
        lambda relay, a: relay.clipboard.get_latest(a.pairingId),
    ),
    RelayFunction(
        "clipboard.getHistory", QUERY, HistoryArgs,
        lambda relay, a: relay.clipboard.get_history(a.pairingId, a.limit),
    ),
    RelayFunction(
        "clipboard.clear", MUTATION, PairingIdArgs,
        lambda relay, a: relay.clipboard.clear(a.pairingId),
    ),
)}


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _describe(error: ValidationError) -> str:
    # Built from locations only: input values may hold clipboard ciphertext.
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    )


def lookup(name: str) -> RelayFunction:
    function = FUNCTIONS.get(name)
    if function is None:
        raise NotFound(f"Unknown function: {name}")
    return function


def call(relay: RelayService, name: str, payload: Any) -> Any:
    """Validate ``payload`` against ``name``'s schema, run it and return a JSON ready value."""
    function = lookup(name)
    try:
        args = function.args_model.model_validate(payload if payload is not None else {})
    except ValidationError as e:
        raise InvalidArguments(_describe(e)) from e

    try:
        return _dump(function.handler(relay, args))
    except redis.RedisError as e:
        logger.error(f"{name} failed on storage: {e}")
        raise StorageUnavailable(str(e)) from e
