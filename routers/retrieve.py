"""
Retrieval API endpoints.

Each call resolves the tenant's instruction profile and the ranked contexts
for a query. The tenant comes from the tenant header and is passed explicitly
to the service.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from core.embeddings import EmbeddingClient, get_embedding_client
from core.services.context_retrieval_service import ContextRetrievalService
from core.services.profile_resolver import ProfileConfigurationError, ProfileResolutionError
from core.services.retrieval_service import RetrievalError
from core.tenant import get_tenant_id
from schemas.retrieval import ContextRetrievalResponse, PlaceRetrieveRequest, RetrieveRequest

logger = logging.getLogger(__name__)
router = APIRouter()


async def get_context_retrieval_service(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    embeddings: EmbeddingClient = Depends(get_embedding_client),
) -> ContextRetrievalService:
    """Dependency to get a retrieval service wired to the app's usage recorder."""
    recorder = getattr(request.app.state, "usage_recorder", None)
    return ContextRetrievalService.create(session_factory, embeddings, recorder)


async def _retrieve(
    service: ContextRetrievalService, tenant_id: str, body: RetrieveRequest, endpoint: str
) -> ContextRetrievalResponse:
    try:
        return await service.retrieve(tenant_id, body, endpoint=endpoint)
    except ProfileConfigurationError as e:
        logger.error(f"Tenant {tenant_id} has no usable instruction profile: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"profile_configuration_error: {e}")
    except ProfileResolutionError as e:
        logger.warning(f"Profile resolution failed for tenant {tenant_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"profile_unavailable: {e}")
    except RetrievalError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"retrieval_unavailable: {e}")


@router.post(
    "/contexts",
    response_model=ContextRetrievalResponse,
    summary="Retrieve contexts",
    description=(
        "Ranks the tenant's contexts for a query and returns them with the instruction "
        "profile message the agent must follow. Supplying lat/long makes it a place query."
    ),
    operation_id="retrieve_contexts",
    responses={
        409: {"description": "Tenant has no active instruction profile"},
        503: {"description": "Context or profile store unavailable"},
    },
)
async def retrieve_contexts(
    body: RetrieveRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ContextRetrievalService = Depends(get_context_retrieval_service),
):
    return await _retrieve(service, tenant_id, body, endpoint="rag/contexts")


@router.post(
    "/place",
    response_model=ContextRetrievalResponse,
    summary="Retrieve nearby places",
    description="Place retrieval around a required lat/long, bounded by max_distance_km.",
    operation_id="retrieve_places",
    responses={
        409: {"description": "Tenant has no active instruction profile"},
        503: {"description": "Context or profile store unavailable"},
    },
)
async def retrieve_places(
    body: PlaceRetrieveRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: ContextRetrievalService = Depends(get_context_retrieval_service),
):
    return await _retrieve(service, tenant_id, body, endpoint="rag/place")
