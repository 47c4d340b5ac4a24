"""
Request orchestration for context retrieval.

Profile resolution and hybrid retrieval are independent, so they run
concurrently under one request deadline. Both must finish before the response
is assembled; if either fails the other is cancelled and the error propagates.
"""

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.embeddings import EmbeddingClient
from core.services.context_store import ContextStore
from core.services.profile_resolver import (
    InstructionProfileResolver,
    ProfileRequest,
    ProfileResolutionError,
)
from core.services.profile_store import ProfileStore
from core.services.response_assembler import ResponseAssembler
from core.services.retrieval_service import (
    HybridRetrievalEngine,
    RetrievalQuery,
    geo_from_request,
)
from core.services.stats_service import UsageStatsRecorder
from schemas.profile import ResolvedProfile
from schemas.retrieval import ContextRetrievalResponse, RetrieveRequest

logger = logging.getLogger(__name__)


class ContextRetrievalService:
    """Runs one retrieval request end to end."""

    def __init__(
        self,
        resolver: InstructionProfileResolver,
        engine: HybridRetrievalEngine,
        assembler: ResponseAssembler,
    ):
        self.resolver = resolver
        self.engine = engine
        self.assembler = assembler

    @classmethod
    def create(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        embeddings: EmbeddingClient,
        recorder: Optional[UsageStatsRecorder] = None,
    ) -> "ContextRetrievalService":
        """Wire the service against the database."""
        return cls(
            resolver=InstructionProfileResolver(ProfileStore(session_factory)),
            engine=HybridRetrievalEngine(ContextStore(session_factory), embeddings),
            assembler=ResponseAssembler(recorder),
        )

    async def _resolve_profile(self, tenant_id: str, request: RetrieveRequest, timeout: float) -> ResolvedProfile:
        profile_request = ProfileRequest(
            intent_scope=request.intent_scope,
            intent_action=request.intent_action,
            channel=request.channel,
            user_segment=request.user_segment,
        )
        try:
            return await asyncio.wait_for(self.resolver.resolve(tenant_id, profile_request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProfileResolutionError(f"Profile resolution timed out after {timeout:.2f}s") from e

    async def retrieve(self, tenant_id: str, request: RetrieveRequest, endpoint: str) -> ContextRetrievalResponse:
        """
        Resolve the instruction profile and ranked contexts for a request.

        Raises:
            ProfileConfigurationError: tenant has no active instruction profile
            ProfileResolutionError: profile store unavailable or too slow
            RetrievalUnavailableError: no retrieval signal could be computed
        """
        start_time = time.perf_counter()
        timeout = request.timeout_ms / 1000 if request.timeout_ms else settings.RETRIEVAL_TIMEOUT_SECONDS
        deadline = asyncio.get_running_loop().time() + timeout

        profile_task = asyncio.create_task(self._resolve_profile(tenant_id, request, timeout))
        retrieval_task = asyncio.create_task(
            self.engine.retrieve(
                tenant_id,
                RetrievalQuery.from_request(request),
                geo=geo_from_request(request),
                deadline=deadline,
            )
        )
        try:
            profile, result = await asyncio.gather(profile_task, retrieval_task)
        finally:
            for task in (profile_task, retrieval_task):
                if not task.done():
                    task.cancel()

        response = self.assembler.assemble(
            tenant_id=tenant_id,
            profile=profile,
            result=result,
            start_time=start_time,
            request=request,
            endpoint=endpoint,
        )
        logger.info(
            f"Retrieval tenant={tenant_id} endpoint={endpoint} method={response.retrieval_method.value} "
            f"strategy={result.strategy.value} hits={len(response.contexts)} "
            f"degraded={result.degraded_signals or '-'} latency_ms={response.latency_ms}"
        )
        return response
