"""Asset registry query API endpoints.

This module exposes the indexed registry state:
- GET /api/assets - All registered assets with their current owner
- GET /api/assets/{asset_id}/transfers - Transfer history of an asset
- GET /api/owners/{address}/assets - Assets currently owned by an address
- GET /api/search - Registrations and transfers matching optional filters
- GET /api/analytics - Totals, most active owners and daily registrations
- POST /api/sync - Run one backfill cycle now
- GET /api/health - Node and store connectivity plus sync progress

Every response is shaped {success, data, count}.
"""

from datetime import datetime
from typing import Generic, TypeVar

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from asset_registry.api.dependencies import get_engine, get_uow_factory
from asset_registry.services.exceptions import ServiceError
from asset_registry.services.sync.engine import SyncEngine

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["assets"])

T = TypeVar("T")


# Response Models


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every endpoint."""

    success: bool = True
    data: T
    count: int | None = Field(
        default=None,
        description="Number of items in data (list responses only)",
    )


class AssetDTO(BaseModel):
    """Registered asset with its current owner."""

    asset_id: int = Field(..., description="On-chain asset ID")
    owner: str = Field(..., description="Registering owner (lower-case address)")
    current_owner: str = Field(
        ...,
        description="New owner of the latest transfer, or the registering owner",
    )
    description: str
    event_timestamp: int = Field(..., description="Unix seconds carried by the event")
    block_number: int
    transaction_hash: str
    created_at: datetime


class TransferDTO(BaseModel):
    """One ownership transfer."""

    asset_id: int
    previous_owner: str
    new_owner: str
    event_timestamp: int
    block_number: int
    transaction_hash: str
    log_index: int
    created_at: datetime


class SearchResultDTO(BaseModel):
    """Registration or transfer matched by /api/search."""

    event_type: str = Field(..., description="registration or transfer")
    asset_id: int
    address: str = Field(..., description="Registering owner or transfer recipient")
    description: str
    event_timestamp: int
    block_number: int
    transaction_hash: str
    created_at: datetime


class OwnerActivityDTO(BaseModel):
    owner: str
    transfer_count: int


class DailyRegistrationsDTO(BaseModel):
    date: datetime
    registrations: int


class AnalyticsDTO(BaseModel):
    """Aggregate registry statistics."""

    total_assets: int
    total_transfers: int
    top_active_owners: list[OwnerActivityDTO]
    activity_trends: list[DailyRegistrationsDTO]


class SyncResultDTO(BaseModel):
    """Outcome of a manually triggered backfill cycle."""

    from_block: int | None = Field(
        default=None,
        description="First scanned block (null when the chain had nothing new)",
    )
    to_block: int | None = None
    registrations: int
    transfers: int
    skipped: int
    watermark: int | None


class HealthDTO(BaseModel):
    status: str = Field(..., description="healthy or unhealthy")
    chain_height: int | None
    node_connected: bool
    store_connected: bool
    watermark: int | None
    state: str


# API Endpoints


def _internal_error(event: str, e: Exception, detail: str) -> HTTPException:
    logger.error(event, error=str(e), error_type=type(e).__name__)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.get("/assets", response_model=ApiResponse[list[AssetDTO]])
async def get_assets(uow_factory=Depends(get_uow_factory)) -> ApiResponse[list[AssetDTO]]:
    """List every registered asset with its current owner, ordered by asset id."""
    try:
        async with await uow_factory() as uow:
            rows = await uow.registrations.get_all_assets()
    except Exception as e:
        raise _internal_error("assets.fetch_failed", e, "Failed to fetch assets")

    assets = [AssetDTO(**row) for row in rows]
    return ApiResponse(data=assets, count=len(assets))


@router.get("/assets/{asset_id}/transfers", response_model=ApiResponse[list[TransferDTO]])
async def get_asset_transfers(
    asset_id: int,
    uow_factory=Depends(get_uow_factory),
) -> ApiResponse[list[TransferDTO]]:
    """Transfer history of an asset, newest first.

    Returns an empty list (not 404) for assets without transfers.
    """
    try:
        async with await uow_factory() as uow:
            transfers = await uow.transfers.get_by_asset_id(asset_id)
    except Exception as e:
        raise _internal_error("assets.transfers_fetch_failed", e, "Failed to fetch asset transfers")

    data = [TransferDTO.model_validate(t, from_attributes=True) for t in transfers]
    return ApiResponse(data=data, count=len(data))


@router.get("/owners/{address}/assets", response_model=ApiResponse[list[AssetDTO]])
async def get_owner_assets(
    address: str,
    uow_factory=Depends(get_uow_factory),
) -> ApiResponse[list[AssetDTO]]:
    """Assets whose current owner is `address` (case-insensitive)."""
    try:
        async with await uow_factory() as uow:
            rows = await uow.registrations.get_assets_by_owner(address)
    except Exception as e:
        raise _internal_error("owners.assets_fetch_failed", e, "Failed to fetch owner assets")

    assets = [AssetDTO(**row) for row in rows]
    return ApiResponse(data=assets, count=len(assets))


@router.get("/search", response_model=ApiResponse[list[SearchResultDTO]])
async def search_events(
    asset_id: int | None = Query(default=None, ge=0),
    address: str | None = Query(default=None, description="Matches either side of a transfer"),
    from_timestamp: int | None = Query(default=None, description="Unix seconds, inclusive"),
    to_timestamp: int | None = Query(default=None, description="Unix seconds, inclusive"),
    uow_factory=Depends(get_uow_factory),
) -> ApiResponse[list[SearchResultDTO]]:
    """Search registrations and transfers, newest first."""
    try:
        async with await uow_factory() as uow:
            rows = await uow.transfers.search_events(
                asset_id=asset_id,
                address=address,
                from_timestamp=from_timestamp,
                to_timestamp=to_timestamp,
            )
    except Exception as e:
        raise _internal_error("search.failed", e, "Failed to search events")

    events = [SearchResultDTO(**row) for row in rows]
    return ApiResponse(data=events, count=len(events))


@router.get("/analytics", response_model=ApiResponse[AnalyticsDTO])
async def get_analytics(uow_factory=Depends(get_uow_factory)) -> ApiResponse[AnalyticsDTO]:
    """Totals, top three owners by transfers sent, registrations per day (last 30 days)."""
    try:
        async with await uow_factory() as uow:
            analytics = AnalyticsDTO(
                total_assets=await uow.registrations.count(),
                total_transfers=await uow.transfers.count(),
                top_active_owners=[
                    OwnerActivityDTO(**row) for row in await uow.transfers.top_active_owners()
                ],
                activity_trends=[
                    DailyRegistrationsDTO(**row)
                    for row in await uow.registrations.daily_registration_counts()
                ],
            )
    except Exception as e:
        raise _internal_error("analytics.fetch_failed", e, "Failed to fetch analytics")

    return ApiResponse(data=analytics)


@router.post("/sync", response_model=ApiResponse[SyncResultDTO])
async def sync_now(engine: SyncEngine = Depends(get_engine)) -> ApiResponse[SyncResultDTO]:
    """Run one backfill cycle immediately.

    Waits for a cycle already in progress to finish first.

    Raises:
        HTTPException 503: Node or store unreachable (watermark unchanged)
    """
    try:
        result = await engine.sync_now()
    except ServiceError as e:
        logger.warning("sync.manual_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sync failed: {type(e).__name__}",
        )

    return ApiResponse(
        data=SyncResultDTO(
            from_block=result.from_block,
            to_block=result.to_block,
            registrations=result.registrations,
            transfers=result.transfers,
            skipped=result.skipped,
            watermark=result.watermark,
        )
    )


@router.get("/health", response_model=ApiResponse[HealthDTO])
async def health_check(
    response: Response,
    engine: SyncEngine = Depends(get_engine),
) -> ApiResponse[HealthDTO]:
    """Node and store connectivity.

    Returns:
        200 when both are reachable, 503 otherwise (same body shape)
    """
    health = await engine.health_status()
    if not health.healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ApiResponse(
        success=health.healthy,
        data=HealthDTO(
            status="healthy" if health.healthy else "unhealthy",
            chain_height=health.chain_height,
            node_connected=health.node_connected,
            store_connected=health.store_connected,
            watermark=health.watermark,
            state=health.state.value,
        ),
    )
