"""OwnershipTransfer repository.

Provides idempotent transfer writes keyed by (transaction_hash, log_index) and
transfer history queries.
"""

from typing import Any

from sqlalchemy import func, literal_column, select, union_all
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from asset_registry.models.asset_registration import AssetRegistration
from asset_registry.models.ownership_transfer import OwnershipTransfer


class OwnershipTransferRepository:
    """Repository for OwnershipTransfer entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def insert(
        self,
        asset_id: int,
        previous_owner: str,
        new_owner: str,
        event_timestamp: int,
        block_number: int,
        transaction_hash: str,
        log_index: int = 0,
        block_timestamp: int | None = None,
    ) -> int:
        """Insert a transfer unless the same event is already stored.

        Query explanation:
        - INSERT: Try to insert new row
        - ON CONFLICT (transaction_hash, log_index): Same event delivered again
        - DO UPDATE: Only fill in block_timestamp if the stored row lacks it;
          every other column is left as first written
        - RETURNING id: Yields the row id in both cases

        Returns:
            Row id of the stored transfer (new or pre-existing)
        """
        stmt = (
            insert(OwnershipTransfer)
            .values(
                asset_id=asset_id,
                previous_owner=previous_owner.lower(),
                new_owner=new_owner.lower(),
                event_timestamp=event_timestamp,
                block_number=block_number,
                transaction_hash=transaction_hash,
                log_index=log_index,
                block_timestamp=block_timestamp,
            )
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["transaction_hash", "log_index"],
            set_={
                "block_timestamp": func.coalesce(
                    OwnershipTransfer.block_timestamp, stmt.excluded.block_timestamp
                )
            },
        ).returning(OwnershipTransfer.id)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.scalar_one()

    async def get_by_asset_id(self, asset_id: int) -> list[OwnershipTransfer]:
        """Retrieve transfer history for an asset, newest first."""
        result = await self.session.execute(
            select(OwnershipTransfer)
            .where(OwnershipTransfer.asset_id == asset_id)  # type: ignore[arg-type]
            .order_by(
                OwnershipTransfer.event_timestamp.desc(),  # type: ignore[attr-defined]
                OwnershipTransfer.block_number.desc(),  # type: ignore[attr-defined]
                OwnershipTransfer.log_index.desc(),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        """Count stored transfers."""
        result = await self.session.execute(select(func.count()).select_from(OwnershipTransfer))
        return result.scalar_one()

    async def top_active_owners(self, limit: int = 3) -> list[dict[str, Any]]:
        """Addresses that transferred assets away most often.

        Args:
            limit: Number of owners to return (default: 3)

        Returns:
            List of {"owner", "transfer_count"} ordered by count descending
        """
        transfer_count = func.count().label("transfer_count")
        result = await self.session.execute(
            select(OwnershipTransfer.previous_owner.label("owner"), transfer_count)  # type: ignore[attr-defined]
            .group_by(OwnershipTransfer.previous_owner)
            .order_by(transfer_count.desc())
            .limit(limit)
        )
        return [{"owner": row.owner, "transfer_count": row.transfer_count} for row in result.all()]

    async def search_events(
        self,
        asset_id: int | None = None,
        address: str | None = None,
        from_timestamp: int | None = None,
        to_timestamp: int | None = None,
    ) -> list[dict[str, Any]]:
        """Search registrations and transfers with optional filters.

        Registrations match `address` on the registering owner; transfers match
        on either side of the transfer. Results are newest first.
        """
        registrations = select(
            literal_column("'registration'").label("event_type"),
            AssetRegistration.asset_id,
            AssetRegistration.owner.label("address"),  # type: ignore[attr-defined]
            AssetRegistration.description,
            AssetRegistration.event_timestamp,
            AssetRegistration.block_number,
            AssetRegistration.transaction_hash,
            AssetRegistration.created_at,
        )
        transfers = select(
            literal_column("'transfer'").label("event_type"),
            OwnershipTransfer.asset_id,
            OwnershipTransfer.new_owner.label("address"),  # type: ignore[attr-defined]
            literal_column("'Ownership Transfer'").label("description"),
            OwnershipTransfer.event_timestamp,
            OwnershipTransfer.block_number,
            OwnershipTransfer.transaction_hash,
            OwnershipTransfer.created_at,
        )

        if asset_id is not None:
            registrations = registrations.where(AssetRegistration.asset_id == asset_id)  # type: ignore[arg-type]
            transfers = transfers.where(OwnershipTransfer.asset_id == asset_id)  # type: ignore[arg-type]
        if address:
            address = address.lower()
            registrations = registrations.where(AssetRegistration.owner == address)  # type: ignore[arg-type]
            transfers = transfers.where(
                (OwnershipTransfer.previous_owner == address)  # type: ignore[arg-type]
                | (OwnershipTransfer.new_owner == address)  # type: ignore[arg-type]
            )
        if from_timestamp is not None:
            registrations = registrations.where(
                AssetRegistration.event_timestamp >= from_timestamp  # type: ignore[arg-type]
            )
            transfers = transfers.where(OwnershipTransfer.event_timestamp >= from_timestamp)  # type: ignore[arg-type]
        if to_timestamp is not None:
            registrations = registrations.where(
                AssetRegistration.event_timestamp <= to_timestamp  # type: ignore[arg-type]
            )
            transfers = transfers.where(OwnershipTransfer.event_timestamp <= to_timestamp)  # type: ignore[arg-type]

        combined = union_all(registrations, transfers).subquery("events")
        result = await self.session.execute(
            select(combined).order_by(
                combined.c.event_timestamp.desc(), combined.c.block_number.desc()
            )
        )
        return [dict(row._mapping) for row in result.all()]
