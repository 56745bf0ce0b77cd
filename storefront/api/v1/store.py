"""Public store endpoints."""

from fastapi import APIRouter, Depends

from storefront.api.deps import get_store_context
from storefront.schemas.store import StoreResponse
from storefront.tenancy.context import StoreContext

router = APIRouter(prefix="/store", tags=["store"])


@router.get("", response_model=StoreResponse)
async def get_store(
    context: StoreContext = Depends(get_store_context),
) -> StoreResponse:
    """Public summary and settings of the store addressed by the host."""
    return StoreResponse(
        store_id=context.store_id,
        name=context.store_name,
        settings=context.settings,
    )
