"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
- SqlLedger maps database errors to StoreWriteFailure
"""

import pytest

from asset_registry.services.blockchain.normalizer import RegistrationRecord, TransferRecord
from asset_registry.services.exceptions import StoreWriteFailure
from asset_registry.services.sync.ledger import SqlLedger

OWNER = "0x1234567890123456789012345678901234567890"
TX_HASH = "0x" + "ab" * 32


async def _register(uow, asset_id: int = 7):
    return await uow.registrations.upsert(
        asset_id=asset_id,
        owner=OWNER,
        description="Test asset",
        event_timestamp=1_700_000_000,
        block_number=103,
        transaction_hash=TX_HASH,
    )


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context should persist after the context exits."""
    async with await uow_factory() as uow:
        await _register(uow)

    async with await uow_factory() as uow:
        found = await uow.registrations.get_by_asset_id(7)
        assert found is not None
        assert found.owner == OWNER


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Changes are rolled back and the exception propagates (not swallowed)."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await _register(uow)
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.registrations.get_by_asset_id(7) is None


@pytest.mark.asyncio
async def test_uow_provides_all_repositories(uow_factory):
    async with await uow_factory() as uow:
        assert uow.registrations is not None
        assert uow.transfers is not None
        assert uow.system_state is not None


@pytest.mark.asyncio
async def test_uow_atomic_multi_repository_operation(uow_factory):
    """Registration, transfer and watermark written in one unit commit together."""
    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            await _register(uow)
            await uow.transfers.insert(
                asset_id=7,
                previous_owner=OWNER,
                new_owner="0x" + "cd" * 20,
                event_timestamp=1_700_000_010,
                block_number=104,
                transaction_hash=TX_HASH,
                log_index=1,
            )
            await uow.system_state.advance_watermark(104)
            raise RuntimeError("crash before commit")

    async with await uow_factory() as uow:
        assert await uow.registrations.count() == 0
        assert await uow.transfers.count() == 0
        assert await uow.system_state.get_watermark() is None


@pytest.mark.asyncio
class TestSqlLedger:
    async def test_writes_and_watermark(self, uow_factory):
        ledger = SqlLedger(uow_factory)
        registration = RegistrationRecord(
            asset_id=7,
            owner=OWNER,
            description="Test asset",
            event_timestamp=1_700_000_000,
            block_number=103,
            tx_hash=TX_HASH,
            block_timestamp=1_700_000_036,
        )
        transfer = TransferRecord(
            asset_id=7,
            previous_owner=OWNER,
            new_owner="0x" + "cd" * 20,
            event_timestamp=1_700_000_010,
            block_number=104,
            tx_hash=TX_HASH,
            log_index=1,
        )

        await ledger.upsert_registration(registration)
        await ledger.upsert_registration(registration)
        await ledger.insert_transfer(transfer)
        await ledger.insert_transfer(transfer)
        assert await ledger.current_watermark() is None
        assert await ledger.advance_watermark(104) == 104

        async with await uow_factory() as uow:
            assert await uow.registrations.count() == 1
            assert await uow.transfers.count() == 1
        assert await ledger.current_watermark() == 104
        assert await ledger.ping() is True

    async def test_database_error_raises_store_write_failure(self, uow_factory):
        ledger = SqlLedger(uow_factory)
        too_long_owner = "0x" + "ab" * 40

        with pytest.raises(StoreWriteFailure):
            await ledger.upsert_registration(
                RegistrationRecord(
                    asset_id=1,
                    owner=too_long_owner,
                    description="x",
                    event_timestamp=1,
                    block_number=1,
                    tx_hash=TX_HASH,
                )
            )
