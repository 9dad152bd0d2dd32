"""Read-only access to the asset registry contract through a JSON-RPC node.

Web3's HTTP provider is synchronous, so every call runs in a worker thread with
a bounded timeout. Transport failures and timeouts surface as NodeUnavailable;
node-imposed eth_getLogs limits surface as RangeTooLarge so callers can split
the range.
"""

import asyncio
from enum import Enum
from typing import Any, Callable

import structlog
from eth_utils.abi import event_signature_to_log_topic
from web3 import Web3
from web3.types import LogReceipt

from asset_registry.core.config import Settings
from asset_registry.services.exceptions import NodeUnavailable, RangeTooLarge

logger = structlog.get_logger()

# Substrings that providers (geth, erigon, Alchemy, Infura, QuickNode, ...) use
# when an eth_getLogs request spans too many blocks or returns too many logs
RANGE_LIMIT_MARKERS = (
    "query returned more than",
    "block range",
    "range is too large",
    "range too large",
    "exceed maximum block range",
    "too many blocks",
    "too many results",
    "response size exceeded",
    "log response size",
    "-32005",
)


class EventKind(str, Enum):
    """Contract events indexed by the registry.

    event AssetRegistered(uint256 indexed assetId, address indexed owner,
                          string description, uint256 timestamp)
    event OwnershipTransferred(uint256 indexed assetId, address indexed previousOwner,
                               address indexed newOwner, uint256 timestamp)
    """

    REGISTRATION = "AssetRegistered"
    TRANSFER = "OwnershipTransferred"

    @property
    def signature(self) -> str:
        """Canonical event signature used for the topic hash."""
        return EVENT_SIGNATURES[self]

    @property
    def topic(self) -> str:
        """topics[0] value (0x-prefixed keccak256 of the signature)."""
        return EVENT_TOPICS[self]

    @classmethod
    def from_topic(cls, topic: str) -> "EventKind | None":
        """Map a topics[0] value back to its event kind (None when unknown)."""
        topic = topic.lower()
        for kind, kind_topic in EVENT_TOPICS.items():
            if kind_topic == topic:
                return kind
        return None


EVENT_SIGNATURES = {
    EventKind.REGISTRATION: "AssetRegistered(uint256,address,string,uint256)",
    EventKind.TRANSFER: "OwnershipTransferred(uint256,address,address,uint256)",
}

EVENT_TOPICS = {
    kind: "0x" + event_signature_to_log_topic(signature).hex()
    for kind, signature in EVENT_SIGNATURES.items()
}


def is_range_limit_error(error: Exception) -> bool:
    """Check whether an RPC error is a node-imposed log range limit."""
    message = str(error).lower()
    return any(marker in message for marker in RANGE_LIMIT_MARKERS)


class ChainReader:
    """Chain reader bound to one contract address."""

    def __init__(self, w3: Web3, contract_address: str, timeout_seconds: float = 30.0):
        """Initialize reader.

        Args:
            w3: Web3 instance (HTTP provider)
            contract_address: Registry contract address (any casing)
            timeout_seconds: Upper bound for each RPC call
        """
        self.w3 = w3
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainReader":
        """Build a reader from RPC_URL / CONTRACT_ADDRESS settings."""
        w3 = Web3(
            Web3.HTTPProvider(
                settings.rpc_url,
                request_kwargs={"timeout": settings.rpc_timeout_seconds},
            )
        )
        return cls(w3, settings.contract_address, timeout_seconds=settings.rpc_timeout_seconds)

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking web3 call in a thread with a timeout.

        Raises:
            NodeUnavailable: On timeout or any transport/RPC failure
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise NodeUnavailable(
                f"{operation} timed out after {self.timeout_seconds} seconds"
            ) from e
        except (NodeUnavailable, RangeTooLarge):
            raise
        except Exception as e:
            raise NodeUnavailable(f"{operation} failed: {e}") from e

    async def current_height(self) -> int:
        """Latest block number known to the node.

        Raises:
            NodeUnavailable: If the node cannot be reached
        """
        return int(await self._call("eth_blockNumber", lambda: self.w3.eth.block_number))

    async def get_logs(
        self,
        kind: EventKind,
        from_block: int,
        to_block: int | str = "latest",
    ) -> list[LogReceipt]:
        """Fetch logs of one event kind in an inclusive block range.

        Args:
            kind: Event to filter on (topics[0])
            from_block: First block (inclusive)
            to_block: Last block (inclusive) or "latest"

        Returns:
            Logs in node order (ascending block number, then log index)

        Raises:
            RangeTooLarge: If the node refuses the range
            NodeUnavailable: On transport failure or timeout
        """
        params = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self.contract_address,
            "topics": [kind.topic],
        }

        def _get_logs() -> list[LogReceipt]:
            try:
                return list(self.w3.eth.get_logs(params))  # type: ignore[arg-type]
            except Exception as e:
                if is_range_limit_error(e) and isinstance(to_block, int):
                    raise RangeTooLarge(from_block, to_block, str(e)) from e
                raise

        logger.debug(
            "chain.eth_getLogs",
            event_kind=kind.value,
            from_block=from_block,
            to_block=to_block,
        )
        return await self._call("eth_getLogs", _get_logs)

    async def get_block_timestamp(self, block_number: int) -> int:
        """Wall-clock timestamp (unix seconds) of a block.

        Raises:
            NodeUnavailable: If the block cannot be fetched
        """
        block = await self._call("eth_getBlockByNumber", self.w3.eth.get_block, block_number)
        return int(block["timestamp"])
