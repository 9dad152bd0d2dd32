"""AssetRegistration repository.

Provides idempotent registration writes and the asset/owner read queries.
"""

from typing import Any

from sqlalchemy import func, literal_column, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from asset_registry.models.asset_registration import AssetRegistration
from asset_registry.models.ownership_transfer import OwnershipTransfer


def _latest_transfer_per_asset():
    """Subquery: new owner of the most recent transfer of every asset.

    Uses PostgreSQL DISTINCT ON, ordered by event timestamp with chain position
    as tie-breaker.
    """
    return (
        select(OwnershipTransfer.asset_id, OwnershipTransfer.new_owner)  # type: ignore[call-overload]
        .distinct(OwnershipTransfer.asset_id)
        .order_by(
            OwnershipTransfer.asset_id,
            OwnershipTransfer.event_timestamp.desc(),  # type: ignore[attr-defined]
            OwnershipTransfer.block_number.desc(),  # type: ignore[attr-defined]
            OwnershipTransfer.log_index.desc(),  # type: ignore[attr-defined]
        )
        .subquery("latest_transfer")
    )


class AssetRegistrationRepository:
    """Repository for AssetRegistration entities.

    Writes are UPSERTs keyed by asset_id so repeated delivery never creates
    duplicate rows. Reads resolve the current owner from the transfer history.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def upsert(
        self,
        asset_id: int,
        owner: str,
        description: str,
        event_timestamp: int,
        block_number: int,
        transaction_hash: str,
        log_index: int = 0,
        block_timestamp: int | None = None,
    ) -> int:
        """Insert a registration or overwrite the existing row for the asset.

        Query explanation:
        - INSERT: Try to insert new row
        - ON CONFLICT (asset_id): If the asset is already registered
        - DO UPDATE: Overwrite with the delivered values (last write wins)

        Registrations are immutable on-chain, so re-applying the same event
        leaves the row unchanged. A delivery without a block timestamp (live
        path) keeps the one already stored.

        Returns:
            Row id of the registration
        """
        values = {
            "asset_id": asset_id,
            "owner": owner.lower(),
            "description": description,
            "event_timestamp": event_timestamp,
            "block_number": block_number,
            "transaction_hash": transaction_hash,
            "log_index": log_index,
            "block_timestamp": block_timestamp,
        }
        stmt = insert(AssetRegistration).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["asset_id"],
            set_={
                **{key: stmt.excluded[key] for key in values if key != "asset_id"},
                "block_timestamp": func.coalesce(
                    stmt.excluded.block_timestamp, AssetRegistration.block_timestamp
                ),
            },
        ).returning(AssetRegistration.id)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.scalar_one()

    async def get_by_asset_id(self, asset_id: int) -> AssetRegistration | None:
        """Retrieve registration by on-chain asset id."""
        result = await self.session.execute(
            select(AssetRegistration).where(AssetRegistration.asset_id == asset_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def count(self) -> int:
        """Count registered assets."""
        result = await self.session.execute(select(func.count()).select_from(AssetRegistration))
        return result.scalar_one()

    def _assets_with_current_owner(self):
        latest = _latest_transfer_per_asset()
        current_owner = func.coalesce(latest.c.new_owner, AssetRegistration.owner)
        stmt = (
            select(AssetRegistration, current_owner.label("current_owner"))
            .outerjoin(latest, latest.c.asset_id == AssetRegistration.asset_id)
            .order_by(AssetRegistration.asset_id)
        )
        return stmt, current_owner

    async def get_all_assets(self) -> list[dict[str, Any]]:
        """Retrieve every registered asset with its current owner.

        Current owner is the new owner of the latest transfer, or the
        registering owner when the asset was never transferred.

        Returns:
            List of dicts: registration columns plus `current_owner`, ordered by asset id
        """
        stmt, _ = self._assets_with_current_owner()
        result = await self.session.execute(stmt)
        return [_asset_row(reg, owner) for reg, owner in result.all()]

    async def get_asset(self, asset_id: int) -> dict[str, Any] | None:
        """Retrieve a single asset with its current owner."""
        stmt, _ = self._assets_with_current_owner()
        result = await self.session.execute(stmt.where(AssetRegistration.asset_id == asset_id))  # type: ignore[arg-type]
        row = result.first()
        return _asset_row(row[0], row[1]) if row else None

    async def get_assets_by_owner(self, owner_address: str) -> list[dict[str, Any]]:
        """Retrieve assets currently owned by an address (case-insensitive).

        Args:
            owner_address: Ethereum address in any casing

        Returns:
            Assets whose current owner matches, ordered by asset id
        """
        stmt, current_owner = self._assets_with_current_owner()
        result = await self.session.execute(stmt.where(current_owner == owner_address.lower()))
        return [_asset_row(reg, owner) for reg, owner in result.all()]

    async def daily_registration_counts(self, limit: int = 30) -> list[dict[str, Any]]:
        """Registrations per UTC day (by event timestamp), most recent days first."""
        day = func.date_trunc("day", func.to_timestamp(AssetRegistration.event_timestamp))
        result = await self.session.execute(
            select(day.label("date"), func.count().label("registrations"))
            .group_by(literal_column("1"))
            .order_by(literal_column("1").desc())
            .limit(limit)
        )
        return [{"date": row.date, "registrations": row.registrations} for row in result.all()]


def _asset_row(registration: AssetRegistration, current_owner: str) -> dict[str, Any]:
    return {
        "id": registration.id,
        "asset_id": registration.asset_id,
        "owner": registration.owner,
        "description": registration.description,
        "event_timestamp": registration.event_timestamp,
        "block_number": registration.block_number,
        "transaction_hash": registration.transaction_hash,
        "created_at": registration.created_at,
        "current_owner": current_owner,
    }
