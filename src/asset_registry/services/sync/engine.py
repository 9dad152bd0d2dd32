"""Event synchronization engine.

Scans `[watermark + 1, chain height]` on a fixed interval, normalizes the
contract's logs and persists them through idempotent ledger writes. The
watermark advances only after every record of the range has been written, so
a failed cycle is retried in full on the next tick. A push subscription may
feed the same write path concurrently; it never touches the watermark.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Protocol

import structlog

from asset_registry.services.blockchain.chain_reader import ChainReader, EventKind
from asset_registry.services.blockchain.normalizer import (
    EventRecord,
    RegistrationRecord,
    normalize,
)
from asset_registry.services.exceptions import (
    MalformedEvent,
    NodeUnavailable,
    RangeTooLarge,
    ServiceError,
    ValueOverflow,
)
from asset_registry.services.sync.ledger import Ledger

logger = structlog.get_logger()


class EngineState(str, Enum):
    """What the engine is doing right now."""

    IDLE = "idle"  # waiting for the next tick, no live subscription
    SCANNING = "scanning"  # a backfill cycle is in progress
    LIVE = "live"  # waiting for the next tick while the live subscription runs


@dataclass
class SyncResult:
    """Outcome of one backfill cycle (or one explicit backfill run)."""

    from_block: int | None
    to_block: int | None
    registrations: int = 0
    transfers: int = 0
    skipped: int = 0
    watermark: int | None = None

    @property
    def scanned(self) -> bool:
        """False when the chain had nothing new."""
        return self.from_block is not None


@dataclass
class HealthStatus:
    """Node and store reachability plus sync progress."""

    chain_height: int | None
    node_connected: bool
    store_connected: bool
    watermark: int | None
    state: EngineState

    @property
    def healthy(self) -> bool:
        return self.node_connected and self.store_connected


class EventSink(Protocol):
    """Anything that accepts normalized records (backfill and live paths alike)."""

    async def receive(self, record: EventRecord) -> None: ...


class LedgerSink:
    """EventSink that writes records through the ledger's idempotent operations."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    async def receive(self, record: EventRecord) -> None:
        if isinstance(record, RegistrationRecord):
            await self.ledger.upsert_registration(record)
        else:
            await self.ledger.insert_transfer(record)


class _FailureLog:
    """Caps log volume when the same cycle failure repeats tick after tick."""

    def __init__(self, every: int):
        self.every = max(every, 1)
        self.signature: tuple[str, str] | None = None
        self.count = 0

    def record(self, error: BaseException, **context: Any) -> None:
        signature = (type(error).__name__, str(error))
        if signature == self.signature:
            self.count += 1
        else:
            self.signature = signature
            self.count = 1

        if self.count == 1 or self.count % self.every == 0:
            logger.error(
                "sync.cycle_failed",
                error=str(error),
                error_type=type(error).__name__,
                occurrences=self.count,
                **context,
            )
        else:
            logger.debug(
                "sync.cycle_failed_repeat",
                error_type=type(error).__name__,
                occurrences=self.count,
            )

    def clear(self) -> None:
        if self.signature is not None:
            logger.info("sync.recovered", failed_cycles=self.count)
        self.signature = None
        self.count = 0


class SyncEngine:
    """Backfill/catch-up engine with a single-writer watermark."""

    def __init__(
        self,
        reader: ChainReader,
        ledger: Ledger,
        *,
        interval_seconds: float = 5.0,
        confirmations: int = 0,
        failure_log_every: int = 12,
        sink: EventSink | None = None,
    ):
        """Initialize engine.

        Args:
            reader: Chain reader bound to the registry contract
            ledger: Persistence port
            interval_seconds: Delay between backfill cycles (default: 5)
            confirmations: Blocks held back from the chain tip (default: 0)
            failure_log_every: Log a repeated identical failure once per N cycles
            sink: Write path for records (default: LedgerSink over `ledger`)
        """
        self.reader = reader
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.confirmations = confirmations
        self.sink = sink or LedgerSink(ledger)

        self._watermark: int | None = None
        self._state = EngineState.IDLE
        self._live = False
        self._cycle_lock = asyncio.Lock()
        self._failures = _FailureLog(failure_log_every)

    @property
    def watermark(self) -> int | None:
        """Highest block whose events are durably persisted (None before initialize)."""
        return self._watermark

    @property
    def state(self) -> EngineState:
        return self._state

    def _resting_state(self) -> EngineState:
        return EngineState.LIVE if self._live else EngineState.IDLE

    def _safe_height(self, height: int) -> int:
        return max(height - self.confirmations, 0)

    async def initialize(self, resume_from_checkpoint: bool = False) -> int:
        """Set the starting watermark.

        By default the watermark starts at the current (confirmed) chain height,
        so history is only scanned by an explicit backfill. With
        `resume_from_checkpoint` the stored watermark is used when present.

        Raises:
            NodeUnavailable: If chain height cannot be read
            StoreWriteFailure: If the stored watermark cannot be read
        """
        start = self._safe_height(await self.reader.current_height())
        source = "chain_height"

        if resume_from_checkpoint:
            stored = await self.ledger.current_watermark()
            if stored is not None:
                start = stored
                source = "checkpoint"

        if self._watermark is None or start > self._watermark:
            self._watermark = start
        logger.info("sync.initialized", watermark=self._watermark, source=source)
        return self._watermark

    async def receive(self, record: EventRecord) -> None:
        """Live-path entry point: persist a pushed record without touching the watermark."""
        await self.sink.receive(record)

    async def sync_now(self) -> SyncResult:
        """Run one backfill cycle and return what it persisted.

        Cycles are serialized: a call made while another cycle is running waits
        for it to finish.

        Raises:
            NodeUnavailable, RangeTooLarge: Chain errors (watermark unchanged)
            StoreWriteFailure: Persistence errors (watermark unchanged)
        """
        async with self._cycle_lock:
            if self._watermark is None:
                await self.initialize()

            self._state = EngineState.SCANNING
            try:
                return await self._run_cycle()
            finally:
                self._state = self._resting_state()

    async def _run_cycle(self) -> SyncResult:
        assert self._watermark is not None
        target = self._safe_height(await self.reader.current_height())

        if target <= self._watermark:
            logger.debug("sync.up_to_date", watermark=self._watermark, target=target)
            return SyncResult(from_block=None, to_block=None, watermark=self._watermark)

        from_block = self._watermark + 1
        logger.info("sync.cycle_start", from_block=from_block, to_block=target)

        records, skipped = await self.fetch_records(from_block, target)
        registrations, transfers = await self._persist(records)

        await self.ledger.advance_watermark(target)
        self._watermark = target

        logger.info(
            "sync.cycle_complete",
            from_block=from_block,
            to_block=target,
            registrations=registrations,
            transfers=transfers,
            skipped=skipped,
            watermark=self._watermark,
        )
        return SyncResult(
            from_block=from_block,
            to_block=target,
            registrations=registrations,
            transfers=transfers,
            skipped=skipped,
            watermark=self._watermark,
        )

    async def run_cycle(self) -> SyncResult | None:
        """Run one cycle, logging instead of raising. Returns None on failure."""
        try:
            result = await self.sync_now()
        except ServiceError as e:
            self._failures.record(e, watermark=self._watermark)
            return None
        except Exception as e:
            self._failures.record(e, watermark=self._watermark, unexpected=True)
            logger.debug("sync.cycle_failed_traceback", exc_info=e)
            return None

        self._failures.clear()
        return result

    async def fetch_records(self, from_block: int, to_block: int) -> tuple[list[EventRecord], int]:
        """Retrieve and normalize both event kinds for an inclusive range.

        Malformed or overflowing logs are skipped with a warning.

        Returns:
            (records ordered by block number then log index, number of skipped logs)

        Raises:
            NodeUnavailable: If logs or block timestamps cannot be fetched
            RangeTooLarge: If the node rejects even a single-block range
        """
        raw_logs: list[Mapping[str, Any]] = []
        for kind in (EventKind.REGISTRATION, EventKind.TRANSFER):
            raw_logs.extend(await self._get_logs_bisected(kind, from_block, to_block))

        records: list[EventRecord] = []
        skipped = 0
        for raw_log in raw_logs:
            try:
                records.append(normalize(raw_log))
            except (MalformedEvent, ValueOverflow) as e:
                skipped += 1
                logger.warning(
                    "sync.event_skipped",
                    reason=type(e).__name__,
                    error=str(e),
                    block_number=raw_log.get("blockNumber"),
                    log_index=raw_log.get("logIndex"),
                )

        records.sort(key=lambda record: record.position)
        return await self._with_block_timestamps(records), skipped

    async def _get_logs_bisected(
        self, kind: EventKind, from_block: int, to_block: int
    ) -> list[Mapping[str, Any]]:
        """eth_getLogs with recursive halving when the node refuses the range.

        The left half is always fetched and concatenated first, so results stay
        in ascending chain order across split boundaries.
        """
        try:
            return list(await self.reader.get_logs(kind, from_block, to_block))
        except RangeTooLarge:
            if from_block >= to_block:
                raise
            mid = (from_block + to_block) // 2
            logger.info(
                "sync.range_bisected",
                event_kind=kind.value,
                from_block=from_block,
                to_block=to_block,
                mid=mid,
            )
            left = await self._get_logs_bisected(kind, from_block, mid)
            right = await self._get_logs_bisected(kind, mid + 1, to_block)
            return left + right

    async def _with_block_timestamps(self, records: list[EventRecord]) -> list[EventRecord]:
        """Attach block timestamps, fetching each block once per pass."""
        cache: dict[int, int] = {}
        enriched = []
        for record in records:
            if record.block_number not in cache:
                cache[record.block_number] = await self.reader.get_block_timestamp(
                    record.block_number
                )
            enriched.append(replace(record, block_timestamp=cache[record.block_number]))
        return enriched

    async def _persist(self, records: list[EventRecord]) -> tuple[int, int]:
        """Write records in chain order; any StoreWriteFailure aborts the cycle."""
        registrations = transfers = 0
        for record in records:
            await self.sink.receive(record)
            if isinstance(record, RegistrationRecord):
                registrations += 1
            else:
                transfers += 1
        return registrations, transfers

    async def run(self, stop_event: asyncio.Event, resume_from_checkpoint: bool = False) -> None:
        """Timer-driven loop; returns once `stop_event` is set.

        The stop signal is checked between cycles only, so a cycle in progress
        (and its writes) always completes.
        """
        logger.info("sync.loop_started", interval_seconds=self.interval_seconds)
        while not stop_event.is_set():
            if self._watermark is None:
                try:
                    await self.initialize(resume_from_checkpoint=resume_from_checkpoint)
                except ServiceError as e:
                    self._failures.record(e, phase="initialize")
            else:
                await self.run_cycle()

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("sync.loop_stopped", watermark=self._watermark)

    async def run_live(self, subscription, stop_event: asyncio.Event) -> None:
        """Run the push subscription, feeding records into `receive`."""
        self._live = True
        if self._state is EngineState.IDLE:
            self._state = EngineState.LIVE
        try:
            await subscription.run(self, stop_event)
        finally:
            self._live = False
            if self._state is EngineState.LIVE:
                self._state = EngineState.IDLE

    async def serve(
        self,
        stop_event: asyncio.Event,
        subscription=None,
        resume_from_checkpoint: bool = False,
    ) -> None:
        """Run the backfill loop and (optionally) the live path until stopped."""
        tasks = [self.run(stop_event, resume_from_checkpoint=resume_from_checkpoint)]
        if subscription is not None:
            tasks.append(self.run_live(subscription, stop_event))
        await asyncio.gather(*tasks)

    async def health_status(self) -> HealthStatus:
        """Current chain height and store connectivity."""
        try:
            height: int | None = await self.reader.current_height()
            node_connected = True
        except NodeUnavailable as e:
            logger.warning("sync.health_node_unavailable", error=str(e))
            height = None
            node_connected = False

        return HealthStatus(
            chain_height=height,
            node_connected=node_connected,
            store_connected=await self.ledger.ping(),
            watermark=self._watermark,
            state=self._state,
        )

    async def backfill(
        self,
        from_block: int,
        to_block: int,
        batch_size: int = 1000,
        dry_run: bool = False,
    ) -> SyncResult:
        """Explicitly scan a historical range in fixed-size chunks.

        Uses the same normalization and idempotent write path as the cycle. The
        stored watermark is advanced after a chunk only when the chunk is
        contiguous with it, so scanning an isolated range never makes the
        watermark skip unscanned blocks.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
            batch_size: Blocks per chunk (default: 1000)
            dry_run: Fetch and normalize only, no writes

        Raises:
            NodeUnavailable, RangeTooLarge, StoreWriteFailure: First failing chunk
        """
        if from_block > to_block:
            return SyncResult(from_block=None, to_block=None, watermark=self._watermark)

        async with self._cycle_lock:
            stored = None if dry_run else await self.ledger.current_watermark()
            result = SyncResult(from_block=from_block, to_block=to_block, watermark=stored)

            for chunk_start in range(from_block, to_block + 1, batch_size):
                chunk_end = min(chunk_start + batch_size - 1, to_block)
                records, skipped = await self.fetch_records(chunk_start, chunk_end)
                result.skipped += skipped

                if dry_run:
                    for record in records:
                        if isinstance(record, RegistrationRecord):
                            result.registrations += 1
                        else:
                            result.transfers += 1
                    continue

                registrations, transfers = await self._persist(records)
                result.registrations += registrations
                result.transfers += transfers

                if stored is None or chunk_start <= stored + 1:
                    stored = await self.ledger.advance_watermark(chunk_end)
                    result.watermark = stored

                logger.info(
                    "sync.backfill_chunk",
                    from_block=chunk_start,
                    to_block=chunk_end,
                    registrations=registrations,
                    transfers=transfers,
                    skipped=skipped,
                    watermark=stored,
                )

            return result
