"""Conversion of raw contract logs into canonical registration/transfer records.

Pure functions only: no RPC, no database. Accepts logs as returned by
web3's eth_getLogs (bytes/HexBytes, int fields) and as pushed by an
eth_subscribe notification (0x-hex strings everywhere).

AssetRegistered layout:
    topics[0]: event signature
    topics[1]: assetId (uint256, indexed)
    topics[2]: owner (address, indexed)
    data:      ABI-encoded (string description, uint256 timestamp)

OwnershipTransferred layout:
    topics[0]: event signature
    topics[1]: assetId (uint256, indexed)
    topics[2]: previousOwner (address, indexed)
    topics[3]: newOwner (address, indexed)
    data:      ABI-encoded (uint256 timestamp)
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from asset_registry.services.blockchain.chain_reader import EventKind
from asset_registry.services.exceptions import MalformedEvent, ValueOverflow

# Largest value a PostgreSQL BIGINT column holds
MAX_STORABLE_INT = 2**63 - 1

_HEX_BODY = re.compile(r"(?:[0-9a-fA-F]{2})*")


@dataclass(frozen=True)
class RegistrationRecord:
    """Canonical AssetRegistered event."""

    asset_id: int
    owner: str
    description: str
    event_timestamp: int
    block_number: int
    tx_hash: str
    log_index: int = 0
    block_timestamp: int | None = None

    kind = EventKind.REGISTRATION

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class TransferRecord:
    """Canonical OwnershipTransferred event."""

    asset_id: int
    previous_owner: str
    new_owner: str
    event_timestamp: int
    block_number: int
    tx_hash: str
    log_index: int = 0
    block_timestamp: int | None = None

    kind = EventKind.TRANSFER

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


EventRecord = RegistrationRecord | TransferRecord


def _to_hex(value: Any, field: str) -> str:
    """Render bytes or a hex string as lower-case 0x-prefixed hex."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        body = value[2:] if value.startswith(("0x", "0X")) else value
        if not _HEX_BODY.fullmatch(body):
            raise MalformedEvent(f"{field} is not valid hex: {value!r}")
        return "0x" + body.lower()
    raise MalformedEvent(f"{field} has unsupported type {type(value).__name__}")


def _to_bytes(value: Any, field: str) -> bytes:
    hex_value = _to_hex(value, field)
    try:
        return bytes.fromhex(hex_value[2:])
    except ValueError as e:
        raise MalformedEvent(f"{field} is not valid hex: {value!r}") from e


def _to_int(value: Any, field: str) -> int:
    """Parse an int or 0x-hex quantity without going through floats."""
    if isinstance(value, bool):
        raise MalformedEvent(f"{field} must be an integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
        except ValueError:
            raise MalformedEvent(f"{field} is not an integer: {value!r}")
    raise MalformedEvent(f"{field} has unsupported type {type(value).__name__}")


def _checked(field: str, value: int) -> int:
    """Reject integers outside the storable BIGINT range."""
    if value < 0 or value > MAX_STORABLE_INT:
        raise ValueOverflow(field, value)
    return value


def _topic_address(topic: Any, field: str) -> str:
    topic_hex = _to_hex(topic, field)
    if len(topic_hex) != 66:
        raise MalformedEvent(f"{field} topic must be 32 bytes, got {len(topic_hex) - 2} hex chars")
    return "0x" + topic_hex[-40:]


def _require(raw_log: Mapping[str, Any], key: str) -> Any:
    value = raw_log.get(key)
    if value is None:
        raise MalformedEvent(f"Log is missing '{key}'")
    return value


def event_kind_of(raw_log: Mapping[str, Any]) -> EventKind:
    """Identify the event kind from topics[0].

    Raises:
        MalformedEvent: If topics are missing or topics[0] is not a known event
    """
    topics = raw_log.get("topics") or []
    if not topics:
        raise MalformedEvent("Log has no topics")
    kind = EventKind.from_topic(_to_hex(topics[0], "topics[0]"))
    if kind is None:
        raise MalformedEvent(f"Unknown event signature {_to_hex(topics[0], 'topics[0]')}")
    return kind


def normalize(raw_log: Mapping[str, Any], block_timestamp: int | None = None) -> EventRecord:
    """Convert one raw log into a RegistrationRecord or TransferRecord.

    Addresses are lower-cased. Integers are decoded with exact precision and
    must fit a BIGINT column.

    Args:
        raw_log: Log entry (eth_getLogs receipt or eth_subscribe payload)
        block_timestamp: Optional wall-clock timestamp of the log's block

    Returns:
        Canonical record for the event

    Raises:
        MalformedEvent: Missing topics/fields or undecodable data
        ValueOverflow: An integer field exceeds the storable range
    """
    kind = event_kind_of(raw_log)
    topics = raw_log["topics"]
    expected_topics = 3 if kind is EventKind.REGISTRATION else 4
    if len(topics) != expected_topics:
        raise MalformedEvent(
            f"{kind.value} expects {expected_topics} topics, got {len(topics)}"
        )

    asset_id = _checked("asset_id", _to_int(_to_hex(topics[1], "topics[1]"), "asset_id"))
    block_number = _checked("block_number", _to_int(_require(raw_log, "blockNumber"), "blockNumber"))
    log_index = _to_int(raw_log.get("logIndex", 0), "logIndex")
    tx_hash = _to_hex(_require(raw_log, "transactionHash"), "transactionHash")
    data = _to_bytes(raw_log.get("data") or b"", "data")

    try:
        if kind is EventKind.REGISTRATION:
            description, timestamp = abi_decode(["string", "uint256"], data)
        else:
            (timestamp,) = abi_decode(["uint256"], data)
    except (DecodingError, ValueError) as e:
        raise MalformedEvent(f"Cannot decode {kind.value} data: {e}") from e

    event_timestamp = _checked("event_timestamp", int(timestamp))

    if kind is EventKind.REGISTRATION:
        return RegistrationRecord(
            asset_id=asset_id,
            owner=_topic_address(topics[2], "owner"),
            description=description,
            event_timestamp=event_timestamp,
            block_number=block_number,
            tx_hash=tx_hash,
            log_index=log_index,
            block_timestamp=block_timestamp,
        )

    return TransferRecord(
        asset_id=asset_id,
        previous_owner=_topic_address(topics[2], "previous_owner"),
        new_owner=_topic_address(topics[3], "new_owner"),
        event_timestamp=event_timestamp,
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
        block_timestamp=block_timestamp,
    )
