"""AssetRegistration entity - one row per registered on-chain asset."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


class AssetRegistration(SQLModel, table=True):
    """AssetRegistration stores the AssetRegistered event for an asset.

    `asset_id` is unique: redelivery of the same registration overwrites the row.
    """

    __tablename__ = "asset_registrations"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    asset_id: int = Field(sa_type=BigInteger, unique=True, index=True)
    owner: str = Field(max_length=42, index=True)  # lower-cased
    description: str
    event_timestamp: int = Field(sa_type=BigInteger, index=True)
    block_number: int = Field(sa_type=BigInteger, index=True)
    transaction_hash: str = Field(max_length=66)
    log_index: int = Field(default=0)
    block_timestamp: int | None = Field(default=None, sa_type=BigInteger)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("owner")
    @classmethod
    def validate_owner(cls, v: str) -> str:
        """Store addresses lower-cased so owner lookups are plain equality."""
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Owner must be in format 0x followed by 40 hex characters")
        return v.lower()

    @field_validator("asset_id")
    @classmethod
    def validate_asset_id(cls, v: int) -> int:
        """Validate asset id is non-negative."""
        if v < 0:
            raise ValueError("Asset id must be non-negative")
        return v
