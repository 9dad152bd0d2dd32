"""Push delivery of new registry events over a WebSocket eth_subscribe("logs").

The live path only lowers latency: records go through the same idempotent
sink as the backfill cycle, write failures are logged and left for the next
backfill cycle, and dropped connections are re-established with capped
exponential backoff.
"""

import asyncio
import json
from typing import Any

import structlog
import websockets
from web3 import Web3

from asset_registry.services.blockchain.chain_reader import EventKind
from asset_registry.services.blockchain.normalizer import EventRecord, normalize
from asset_registry.services.exceptions import MalformedEvent, StoreWriteFailure, ValueOverflow

logger = structlog.get_logger()


class EventSubscription:
    """eth_subscribe client feeding normalized records into an event sink."""

    def __init__(
        self,
        ws_url: str,
        contract_address: str,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        recv_poll_seconds: float = 1.0,
    ):
        """Initialize subscription.

        Args:
            ws_url: WebSocket JSON-RPC endpoint (wss://...)
            contract_address: Registry contract address
            reconnect_delay: First reconnect delay in seconds (doubles per failure)
            max_reconnect_delay: Upper bound for the reconnect delay
            recv_poll_seconds: How often the receive loop checks the stop signal
        """
        self.ws_url = ws_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.recv_poll_seconds = recv_poll_seconds
        self._request_id = 0

    def subscribe_request(self) -> dict[str, Any]:
        """Build the eth_subscribe request for both registry events."""
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {
                    "address": self.contract_address,
                    "topics": [[EventKind.REGISTRATION.topic, EventKind.TRANSFER.topic]],
                },
            ],
        }

    async def run(self, sink, stop_event: asyncio.Event) -> None:
        """Stream events into `sink` until `stop_event` is set."""
        backoff = self.reconnect_delay

        while not stop_event.is_set():
            try:
                async with websockets.connect(
                    self.ws_url, ping_interval=20, ping_timeout=20
                ) as ws:
                    subscription_id = await self._subscribe(ws, sink)
                    logger.info("live.subscribed", subscription_id=subscription_id)
                    backoff = self.reconnect_delay
                    await self._consume(ws, sink, stop_event)
                    await self._unsubscribe(ws, subscription_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if stop_event.is_set():
                    break
                logger.warning(
                    "live.connection_lost",
                    error=str(e),
                    error_type=type(e).__name__,
                    retry_in_seconds=backoff,
                )
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=backoff)
                except asyncio.TimeoutError:
                    pass
                backoff = min(backoff * 2, self.max_reconnect_delay)

        logger.info("live.stopped")

    async def _subscribe(self, ws, sink) -> str:
        request = self.subscribe_request()
        await ws.send(json.dumps(request))

        while True:
            message = await ws.recv()
            payload = json.loads(message)
            if payload.get("id") == request["id"]:
                if "result" in payload:
                    return payload["result"]
                raise ConnectionError(f"eth_subscribe rejected: {payload.get('error')}")
            # Notifications can race ahead of the subscribe response
            await self.handle_message(payload, sink)

    async def _consume(self, ws, sink, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=self.recv_poll_seconds)
            except asyncio.TimeoutError:
                continue
            await self.handle_message(json.loads(message), sink)

    async def _unsubscribe(self, ws, subscription_id: str) -> None:
        self._request_id += 1
        await ws.send(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": self._request_id,
                    "method": "eth_unsubscribe",
                    "params": [subscription_id],
                }
            )
        )
        logger.info("live.unsubscribed", subscription_id=subscription_id)

    async def handle_message(self, payload: dict[str, Any], sink) -> EventRecord | None:
        """Normalize one subscription notification and hand it to the sink.

        Returns:
            The persisted record, or None when the message was ignored
        """
        if payload.get("method") != "eth_subscription":
            if payload.get("error"):
                logger.warning("live.rpc_error", error=payload["error"])
            return None

        log = payload.get("params", {}).get("result")
        if not log:
            return None

        if log.get("removed", False):
            # Chain reorg: the backfill cycle re-reads the canonical chain
            logger.warning(
                "live.removed_log",
                tx_hash=log.get("transactionHash"),
                block_number=log.get("blockNumber"),
            )
            return None

        try:
            record = normalize(log)
        except (MalformedEvent, ValueOverflow) as e:
            logger.warning("live.event_skipped", reason=type(e).__name__, error=str(e))
            return None

        try:
            await sink.receive(record)
        except StoreWriteFailure as e:
            logger.warning(
                "live.write_failed",
                error=str(e),
                asset_id=record.asset_id,
                tx_hash=record.tx_hash,
            )
            return None

        logger.info(
            "live.event_stored",
            event_kind=record.kind.value,
            asset_id=record.asset_id,
            block_number=record.block_number,
        )
        return record
