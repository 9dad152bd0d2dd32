"""SystemState entity - Singleton key-value store for operational state."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

# Key under which the sync watermark (last fully persisted block) is stored
LAST_PROCESSED_BLOCK = "last_processed_block"


class SystemState(SQLModel, table=True):
    """SystemState is a singleton key-value store for operational state.

    The sync engine keeps its watermark here so an explicit backfill can resume
    after a crash.
    """

    __tablename__ = "system_state"  # type: ignore[assignment]

    key: str = Field(primary_key=True, max_length=255)
    state_value: dict | int | str | None = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Validate key is alphanumeric + underscores only."""
        if not v.replace("_", "").isalnum():
            raise ValueError("Key must be alphanumeric with underscores only")
        return v
