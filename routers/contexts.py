"""Read-only context endpoints for a tenant."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from core.services.context_store import ContextStore
from core.tenant import get_tenant_id
from schemas.retrieval import ContextItem, ContextListResponse

router = APIRouter(prefix="/contexts", tags=["contexts"])


async def get_context_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ContextStore:
    return ContextStore(session_factory)


@router.get("", response_model=ContextListResponse)
async def list_contexts(
    q: Optional[str] = Query(None, max_length=200, description="Substring of title or body"),
    type: Optional[str] = Query(None, description="Context type"),
    status_filter: Optional[str] = Query(None, alias="status"),
    intent_scope: Optional[str] = Query(None),
    intent_action: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
    store: ContextStore = Depends(get_context_store),
) -> ContextListResponse:
    """List the tenant's contexts, most recently updated first."""
    items, total = await store.list_contexts(
        tenant_id,
        q=q,
        context_type=type,
        status=status_filter,
        intent_scope=intent_scope,
        intent_action=intent_action,
        page=page,
        page_size=page_size,
    )
    return ContextListResponse(
        items=[ContextItem.model_validate(c) for c in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{context_id}", response_model=ContextItem)
async def get_context(
    context_id: UUID,
    tenant_id: str = Depends(get_tenant_id),
    store: ContextStore = Depends(get_context_store),
) -> ContextItem:
    """Get one of the tenant's contexts."""
    context = await store.get(tenant_id, context_id)
    if context is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Context not found")
    return ContextItem.model_validate(context)
