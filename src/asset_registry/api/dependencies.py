"""FastAPI dependencies for accessing application state from routes."""

from typing import Awaitable, Callable

from fastapi import Request

from asset_registry.services.sync.engine import SyncEngine
from asset_registry.uow import UnitOfWork


def get_uow_factory(request: Request) -> Callable[[], Awaitable[UnitOfWork]]:
    """Get UnitOfWork factory from app state.

    Args:
        request: FastAPI Request object (contains app.state)

    Returns:
        UnitOfWork factory function from app lifespan

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.registrations.get_all_assets()
    """
    return request.app.state.uow_factory


def get_engine(request: Request) -> SyncEngine:
    """Get the running SyncEngine from app state."""
    return request.app.state.engine
