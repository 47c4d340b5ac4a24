"""Builds the retrieval response and hands usage stats to the recorder."""

import logging
import time
from typing import List, Optional

from core.config import settings
from core.services.retrieval_service import RankedContext, RetrievalResult
from core.services.stats_service import UsageEvent, UsageStatsRecorder
from schemas.profile import ResolvedProfile
from schemas.retrieval import (
    Citation,
    ContextItem,
    ContextRetrievalResponse,
    IntentFiltersApplied,
    RetrieveRequest,
)

logger = logging.getLogger(__name__)


def make_snippet(body: Optional[str], max_chars: int) -> str:
    """Whitespace-collapsed excerpt of ``body``, at most ``max_chars`` long."""
    text = " ".join((body or "").split())
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars // 2:
        cut = cut[:space]
    return cut


def to_context_item(ranked: RankedContext) -> ContextItem:
    item = ContextItem.model_validate(ranked.context)
    item.score = round(ranked.score, 6)
    if ranked.distance_km is not None:
        item.distance_km = round(ranked.distance_km, 3)
    return item


class ResponseAssembler:
    """Combines the resolved profile and ranked contexts into the response."""

    def __init__(self, recorder: Optional[UsageStatsRecorder] = None, snippet_max_chars: Optional[int] = None):
        self.recorder = recorder
        self.snippet_max_chars = snippet_max_chars or settings.SNIPPET_MAX_CHARS

    def assemble(
        self,
        tenant_id: str,
        profile: ResolvedProfile,
        result: RetrievalResult,
        start_time: float,
        request: RetrieveRequest,
        endpoint: str,
    ) -> ContextRetrievalResponse:
        """
        Build the response, then queue its usage event.

        ``start_time`` is a ``time.perf_counter()`` reading taken when the
        request started. Recording never raises into the caller.
        """
        contexts: List[ContextItem] = [to_context_item(rc) for rc in result.contexts]
        citations = [
            Citation(
                context_id=rc.context.id,
                snippet=make_snippet(rc.context.body, self.snippet_max_chars),
                score=round(rc.score, 6),
            )
            for rc in result.contexts
        ]

        response = ContextRetrievalResponse(
            contexts=contexts,
            citations=citations,
            profile_id=profile.id,
            ai_instruction_message=profile.ai_instruction_message,
            retrieval_method=result.method,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            intent_filters_applied=IntentFiltersApplied(
                scope_filter=result.scope_filter,
                action_filter=result.action_filter,
                combined_query=result.combined_query,
            ),
        )

        self._dispatch(tenant_id, profile, result, request, endpoint, response.latency_ms)
        return response

    def _dispatch(
        self,
        tenant_id: str,
        profile: ResolvedProfile,
        result: RetrievalResult,
        request: RetrieveRequest,
        endpoint: str,
        latency_ms: float,
    ) -> None:
        if self.recorder is None:
            return
        try:
            event = UsageEvent(
                tenant_id=tenant_id,
                endpoint=endpoint,
                query=request.text_query,
                context_ids=[rc.context.id for rc in result.contexts],
                latency_ms=latency_ms,
                retrieval_method=result.method.value,
                intent_scope=request.intent_scope,
                intent_action=request.intent_action,
                intent_detail=request.intent_detail,
                intent_strategy=result.strategy.value,
                profile_id=profile.id,
                prompt_key=request.prompt_key,
                prompt_params=request.prompt_params,
                request_body=request.model_dump(mode="json", exclude_none=True),
            )
            self.recorder.record(event)
        except Exception:
            logger.exception(f"Failed to queue usage stats for tenant {tenant_id}")
