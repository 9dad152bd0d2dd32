"""Repository layer for the asset registry.

Provides data access abstractions for all domain entities.
"""

from asset_registry.repositories.asset_registration import AssetRegistrationRepository
from asset_registry.repositories.ownership_transfer import OwnershipTransferRepository
from asset_registry.repositories.system_state import SystemStateRepository

__all__ = [
    "AssetRegistrationRepository",
    "OwnershipTransferRepository",
    "SystemStateRepository",
]
