"""SystemState repository.

Provides data access methods for the SystemState key-value store and the
monotonic sync watermark kept in it.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from asset_registry.models.system_state import LAST_PROCESSED_BLOCK, SystemState

_ADVANCE_WATERMARK_SQL = text(
    """
    INSERT INTO system_state (key, state_value, updated_at)
    VALUES (:key, to_json(CAST(:block_number AS BIGINT)), :updated_at)
    ON CONFLICT (key) DO UPDATE SET
        state_value = to_json(GREATEST(
            CAST(system_state.state_value #>> '{}' AS BIGINT),
            CAST(EXCLUDED.state_value #>> '{}' AS BIGINT)
        )),
        updated_at = EXCLUDED.updated_at
    RETURNING CAST(state_value #>> '{}' AS BIGINT)
    """
)


class SystemStateRepository:
    """Repository for SystemState key-value store.

    The watermark is written with a GREATEST upsert (INSERT ... ON CONFLICT DO UPDATE).
    State values are stored as JSON and automatically serialized/deserialized.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Retrieve state value for a key.

        Args:
            key: State key (e.g., "last_processed_block")

        Returns:
            Deserialized state value if found, None otherwise
        """
        result = await self.session.execute(select(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        state = result.scalar_one_or_none()
        return state.state_value if state else None

    async def get_watermark(self) -> int | None:
        """Get the last fully processed block, or None if never recorded."""
        value = await self.get_state(LAST_PROCESSED_BLOCK)
        return None if value is None else int(value)

    async def advance_watermark(self, block_number: int) -> int:
        """Raise the stored watermark to `block_number` (never lowers it).

        Query explanation:
        - INSERT the value when no watermark exists yet
        - ON CONFLICT (key) DO UPDATE with GREATEST(stored, new), so stale
          writers cannot move the watermark backwards

        Returns:
            Stored watermark after the update
        """
        result = await self.session.execute(
            _ADVANCE_WATERMARK_SQL,
            {
                "key": LAST_PROCESSED_BLOCK,
                "block_number": block_number,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        await self.session.flush()
        return int(result.scalar_one())
