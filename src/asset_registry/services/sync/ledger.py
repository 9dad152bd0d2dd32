"""Persistence port used by the sync engine.

Every write runs in its own unit of work, so each record is committed
atomically and a failure never leaves a half-written row. SQLAlchemy errors
are re-raised as StoreWriteFailure.
"""

from typing import Protocol

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from asset_registry.services.blockchain.normalizer import RegistrationRecord, TransferRecord
from asset_registry.services.exceptions import StoreWriteFailure

logger = structlog.get_logger()


class Ledger(Protocol):
    """Idempotent writes and watermark bookkeeping for indexed events."""

    async def upsert_registration(self, record: RegistrationRecord) -> int: ...

    async def insert_transfer(self, record: TransferRecord) -> int: ...

    async def current_watermark(self) -> int | None: ...

    async def advance_watermark(self, block_number: int) -> int: ...

    async def ping(self) -> bool: ...


class SqlLedger:
    """Ledger backed by PostgreSQL through the UnitOfWork repositories."""

    def __init__(self, uow_factory):
        """Initialize ledger.

        Args:
            uow_factory: Factory from create_uow_factory()
        """
        self.uow_factory = uow_factory

    async def upsert_registration(self, record: RegistrationRecord) -> int:
        """Store a registration, overwriting any earlier delivery of the same asset.

        Raises:
            StoreWriteFailure: If the database rejects the write
        """
        try:
            async with await self.uow_factory() as uow:
                return await uow.registrations.upsert(
                    asset_id=record.asset_id,
                    owner=record.owner,
                    description=record.description,
                    event_timestamp=record.event_timestamp,
                    block_number=record.block_number,
                    transaction_hash=record.tx_hash,
                    log_index=record.log_index,
                    block_timestamp=record.block_timestamp,
                )
        except SQLAlchemyError as e:
            raise StoreWriteFailure(
                f"Failed to upsert registration for asset {record.asset_id}: {e}"
            ) from e

    async def insert_transfer(self, record: TransferRecord) -> int:
        """Store a transfer; redelivery of the same (tx_hash, log_index) is a no-op.

        Raises:
            StoreWriteFailure: If the database rejects the write
        """
        try:
            async with await self.uow_factory() as uow:
                return await uow.transfers.insert(
                    asset_id=record.asset_id,
                    previous_owner=record.previous_owner,
                    new_owner=record.new_owner,
                    event_timestamp=record.event_timestamp,
                    block_number=record.block_number,
                    transaction_hash=record.tx_hash,
                    log_index=record.log_index,
                    block_timestamp=record.block_timestamp,
                )
        except SQLAlchemyError as e:
            raise StoreWriteFailure(
                f"Failed to insert transfer {record.tx_hash}:{record.log_index}: {e}"
            ) from e

    async def current_watermark(self) -> int | None:
        """Stored watermark, or None when no cycle has ever completed."""
        try:
            async with await self.uow_factory() as uow:
                return await uow.system_state.get_watermark()
        except SQLAlchemyError as e:
            raise StoreWriteFailure(f"Failed to read watermark: {e}") from e

    async def advance_watermark(self, block_number: int) -> int:
        """Raise the stored watermark; returns the stored value afterwards.

        Raises:
            StoreWriteFailure: If the database rejects the write
        """
        try:
            async with await self.uow_factory() as uow:
                return await uow.system_state.advance_watermark(block_number)
        except SQLAlchemyError as e:
            raise StoreWriteFailure(f"Failed to advance watermark to {block_number}: {e}") from e

    async def ping(self) -> bool:
        """Check store connectivity with SELECT 1 (never raises)."""
        try:
            async with await self.uow_factory() as uow:
                result = await uow.session.execute(text("SELECT 1"))
                result.scalar()
            return True
        except Exception as e:
            logger.warning("ledger.ping_failed", error=str(e), error_type=type(e).__name__)
            return False
