"""OwnershipTransfer entity - ownership change history per asset."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import BigInteger, UniqueConstraint
from sqlmodel import Field, SQLModel


class OwnershipTransfer(SQLModel, table=True):
    """OwnershipTransfer stores one OwnershipTransferred event.

    `asset_id` is deliberately not a foreign key: transfers may arrive before
    the registration they refer to. `(transaction_hash, log_index)` identifies
    the event, so redelivery is absorbed by the unique constraint.
    """

    __tablename__ = "ownership_transfers"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_ownership_transfers_tx_log"),
    )

    id: int | None = Field(default=None, primary_key=True)
    asset_id: int = Field(sa_type=BigInteger, index=True)
    previous_owner: str = Field(max_length=42, index=True)
    new_owner: str = Field(max_length=42, index=True)
    event_timestamp: int = Field(sa_type=BigInteger, index=True)
    block_number: int = Field(sa_type=BigInteger, index=True)
    transaction_hash: str = Field(max_length=66)
    log_index: int = Field(default=0)
    block_timestamp: int | None = Field(default=None, sa_type=BigInteger)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("previous_owner", "new_owner")
    @classmethod
    def lower_address(cls, v: str) -> str:
        """Store addresses lower-cased."""
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Address must be in format 0x followed by 40 hex characters")
        return v.lower()
