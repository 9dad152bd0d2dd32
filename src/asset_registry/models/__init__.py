"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from asset_registry.models.asset_registration import AssetRegistration
from asset_registry.models.ownership_transfer import OwnershipTransfer
from asset_registry.models.system_state import LAST_PROCESSED_BLOCK, SystemState

__all__ = [
    "AssetRegistration",
    "OwnershipTransfer",
    "SystemState",
    "LAST_PROCESSED_BLOCK",
]
