"""
Hybrid context retrieval.

Three paths, tried in order:

- fallback: blank query text or every weight zero. A trust/recency ordered
  slice of the filtered contexts, score 0.0.
- structured: intent scope/action filters are in force and leave at most
  ``top_k`` contexts. Those are returned as exact matches, score 1.0.
- hybrid: full-text, vector and (place queries) distance sub-queries run
  concurrently against the context store until the request deadline. Signals
  that fail or are still pending at the deadline are dropped (weight 0) and
  the composite is re-normalized over the rest. If no signal completes the
  request fails with ``RetrievalUnavailableError``.

Place queries never return a context farther than ``max_distance_km`` from the
query point, whatever the distance weight.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.embeddings import EmbeddingClient
from core.services.context_store import CandidateFilter, ContextStore, GeoBounds
from core.services.intent_filter import (
    IntentFilters,
    IntentFilterStrategy,
    applies_action_filter,
    applies_scope_filter,
    resolve_intent_strategy,
)
from core.services.scoring import (
    SignalScores,
    SignalWeights,
    composite_score,
    distance_score,
    haversine_km,
    rank,
)
from models.context import Context
from schemas.retrieval import RetrievalMethod, RetrieveRequest

logger = logging.getLogger(__name__)

STRUCTURED_SCORE = 1.0
FALLBACK_SCORE = 0.0


class RetrievalError(Exception):
    """Base exception for retrieval errors."""

    pass


class RetrievalUnavailableError(RetrievalError):
    """The context store could not produce any signal for the request."""

    pass


@dataclass(frozen=True)
class GeoQuery:
    lat: float
    long: float
    max_distance_km: float = 5.0
    distance_weight: float = 1.0

    def bounds(self) -> GeoBounds:
        return GeoBounds(lat=self.lat, lon=self.long, max_distance_km=self.max_distance_km)

    @property
    def radius_km(self) -> float:
        """Radius as enforced in SQL (never zero)."""
        return self.bounds().radius_km


@dataclass(frozen=True)
class RetrievalQuery:
    text_query: str
    semantic_augment: Optional[str] = None
    intent_scope: Optional[str] = None
    intent_action: Optional[str] = None
    intent_detail: Optional[str] = None
    category: Optional[str] = None
    top_k: int = 3
    min_score: float = 0.5
    fulltext_weight: float = 0.5
    semantic_weight: float = 0.5

    @classmethod
    def from_request(cls, request: RetrieveRequest) -> "RetrievalQuery":
        return cls(
            text_query=request.text_query,
            semantic_augment=request.semantic_augment,
            intent_scope=request.intent_scope,
            intent_action=request.intent_action,
            intent_detail=request.intent_detail,
            category=request.category,
            top_k=request.top_k,
            min_score=request.min_score,
            fulltext_weight=request.fulltext_weight,
            semantic_weight=request.semantic_weight,
        )

    @property
    def intent_filters(self) -> IntentFilters:
        return IntentFilters(scope=self.intent_scope, action=self.intent_action, detail=self.intent_detail)


def geo_from_request(request: RetrieveRequest) -> Optional[GeoQuery]:
    if not request.has_geo:
        return None
    return GeoQuery(
        lat=request.lat,
        long=request.long,
        max_distance_km=request.max_distance_km,
        distance_weight=request.distance_weight,
    )


@dataclass
class RankedContext:
    context: Context
    score: float
    distance_km: Optional[float] = None


@dataclass
class RetrievalResult:
    contexts: List[RankedContext]
    method: RetrievalMethod
    strategy: IntentFilterStrategy
    scope_filter: bool
    action_filter: bool
    combined_query: str
    degraded_signals: List[str] = field(default_factory=list)


def build_text_query(query: RetrievalQuery, strategy: IntentFilterStrategy) -> str:
    """Text used for full-text scoring: the query, plus the detail for ``combined``."""
    parts = [query.text_query.strip()]
    if strategy == IntentFilterStrategy.COMBINED and query.intent_detail:
        parts.append(query.intent_detail.strip())
    return " ".join(p for p in parts if p)


def build_combined_query(query: RetrievalQuery, strategy: IntentFilterStrategy) -> str:
    """Text used for semantic scoring: query, semantic augment, then the detail for ``combined``."""
    parts = [query.text_query.strip()]
    if query.semantic_augment:
        parts.append(query.semantic_augment.strip())
    if strategy == IntentFilterStrategy.COMBINED and query.intent_detail:
        parts.append(query.intent_detail.strip())
    return " ".join(p for p in parts if p)


def _attribute_number(value) -> Optional[float]:
    # bool is an int subclass but not a JSON number
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def context_coordinates(context: Context) -> Optional[tuple[float, float]]:
    """A context's (lat, lon): the columns when both are set, else ``attributes.lat/lon``.

    Mirrors ``place_latitude_sql``/``place_longitude_sql`` in the context store.
    """
    if context.has_coordinates:
        return context.latitude, context.longitude
    attributes = context.attributes or {}
    lat, lon = _attribute_number(attributes.get("lat")), _attribute_number(attributes.get("lon"))
    if lat is None or lon is None:
        return None
    return lat, lon


def distance_to(context: Context, geo: GeoQuery) -> Optional[float]:
    coordinates = context_coordinates(context)
    if coordinates is None:
        return None
    return haversine_km(geo.lat, geo.long, coordinates[0], coordinates[1])


class _Candidate:
    __slots__ = ("context", "text", "vector", "distance_km")

    def __init__(self, context: Context):
        self.context = context
        self.text = 0.0
        self.vector = 0.0
        self.distance_km: Optional[float] = None


class HybridRetrievalEngine:
    """Ranks a tenant's contexts for a query."""

    def __init__(
        self,
        store: ContextStore,
        embeddings: EmbeddingClient,
        min_candidates: Optional[int] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.min_candidates = min_candidates or settings.RETRIEVAL_MIN_CANDIDATES

    async def retrieve(
        self,
        tenant_id: str,
        query: RetrievalQuery,
        geo: Optional[GeoQuery] = None,
        deadline: Optional[float] = None,
    ) -> RetrievalResult:
        """
        Retrieve ranked contexts for ``tenant_id``.

        Args:
            tenant_id: Tenant whose contexts are searched
            query: Query text, intent hints, thresholds and weights
            geo: Query point for place searches
            deadline: Absolute ``loop.time()`` by which sub-queries must finish

        Raises:
            RetrievalUnavailableError: the store failed for every signal
        """
        strategy = resolve_intent_strategy(query.intent_filters)
        scope_filter = applies_scope_filter(strategy)
        action_filter = applies_action_filter(strategy)

        candidate_filter = CandidateFilter(
            tenant_id=tenant_id,
            category=query.category,
            intent_scope=query.intent_scope if scope_filter else None,
            intent_action=query.intent_action if action_filter else None,
            geo=geo.bounds() if geo else None,
        )
        weights = SignalWeights(
            fulltext=query.fulltext_weight,
            semantic=query.semantic_weight,
            distance=geo.distance_weight if geo else 0.0,
        )

        def result(contexts: List[RankedContext], method: RetrievalMethod, degraded=None) -> RetrievalResult:
            return RetrievalResult(
                contexts=contexts,
                method=method,
                strategy=strategy,
                scope_filter=scope_filter,
                action_filter=action_filter,
                combined_query=build_combined_query(query, strategy),
                degraded_signals=degraded or [],
            )

        if not query.text_query.strip() or weights.total <= 0:
            contexts = await self._fallback(candidate_filter, query.top_k, geo, deadline)
            return result(contexts, RetrievalMethod.FALLBACK)

        if candidate_filter.has_structural_filter:
            contexts = await self._structured(candidate_filter, query.top_k, geo, deadline)
            if contexts is not None:
                return result(contexts, RetrievalMethod.STRUCTURED)

        contexts, degraded = await self._hybrid(candidate_filter, query, strategy, weights, geo, deadline)
        return result(contexts, RetrievalMethod.HYBRID, degraded)

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(0.0, deadline - asyncio.get_running_loop().time())

    def _within_radius(self, contexts: List[Context], geo: Optional[GeoQuery], score: float) -> List[RankedContext]:
        ranked = []
        for context in contexts:
            distance = None
            if geo is not None:
                distance = distance_to(context, geo)
                if distance is None or distance > geo.radius_km:
                    continue
            ranked.append(RankedContext(context=context, score=score, distance_km=distance))
        return ranked

    async def _fallback(
        self, f: CandidateFilter, top_k: int, geo: Optional[GeoQuery], deadline: Optional[float]
    ) -> List[RankedContext]:
        try:
            contexts = await asyncio.wait_for(self.store.recent(f, top_k), timeout=self._remaining(deadline))
        except (asyncio.TimeoutError, SQLAlchemyError, OSError) as e:
            logger.error(f"Fallback retrieval failed for tenant {f.tenant_id}: {e!r}")
            raise RetrievalUnavailableError("Context store unavailable") from e
        return self._within_radius(contexts, geo, FALLBACK_SCORE)

    async def _structured(
        self, f: CandidateFilter, top_k: int, geo: Optional[GeoQuery], deadline: Optional[float]
    ) -> Optional[List[RankedContext]]:
        """Exact structural matches, or None when scoring is still needed."""
        try:
            contexts = await asyncio.wait_for(
                self.store.structured_candidates(f, top_k + 1),
                timeout=self._remaining(deadline),
            )
        except (asyncio.TimeoutError, SQLAlchemyError, OSError) as e:
            logger.warning(f"Structured lookup failed for tenant {f.tenant_id}, using hybrid scoring: {e!r}")
            return None
        if len(contexts) > top_k:
            return None
        return self._within_radius(contexts, geo, STRUCTURED_SCORE)

    async def _vector_signal(self, f: CandidateFilter, text: str, limit: int):
        embedding = await self.embeddings.embed(text)
        return await self.store.vector_search(f, embedding, limit)

    async def _hybrid(
        self,
        f: CandidateFilter,
        query: RetrievalQuery,
        strategy: IntentFilterStrategy,
        weights: SignalWeights,
        geo: Optional[GeoQuery],
        deadline: Optional[float],
    ) -> tuple[List[RankedContext], List[str]]:
        limit = max(self.min_candidates, 2 * query.top_k)

        tasks: Dict[str, asyncio.Task] = {}
        if weights.fulltext > 0:
            tasks["fulltext"] = asyncio.create_task(
                self.store.fulltext_search(f, build_text_query(query, strategy), limit)
            )
        if weights.semantic > 0:
            tasks["semantic"] = asyncio.create_task(
                self._vector_signal(f, build_combined_query(query, strategy), limit)
            )
        if geo is not None and weights.distance > 0:
            tasks["distance"] = asyncio.create_task(self.store.nearby(f, limit))

        done, pending = await asyncio.wait(tasks.values(), timeout=self._remaining(deadline))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results = {}
        degraded = []
        for name, task in tasks.items():
            if task not in done:
                logger.warning(f"Signal {name} timed out for tenant {f.tenant_id}, dropping it")
                degraded.append(name)
            elif task.exception() is not None:
                logger.warning(f"Signal {name} failed for tenant {f.tenant_id}, dropping it: {task.exception()!r}")
                degraded.append(name)
            else:
                results[name] = task.result()

        if not results:
            logger.error(f"All retrieval signals failed for tenant {f.tenant_id}: {degraded}")
            raise RetrievalUnavailableError("Context store unavailable for every retrieval signal")

        effective = weights.without(*degraded)

        candidates: Dict[object, _Candidate] = {}

        def candidate(context: Context) -> _Candidate:
            if context.id not in candidates:
                candidates[context.id] = _Candidate(context)
            return candidates[context.id]

        for context, score in results.get("fulltext", []):
            candidate(context).text = score
        for context, score in results.get("semantic", []):
            candidate(context).vector = score
        for context, distance in results.get("distance", []):
            candidate(context).distance_km = distance

        scored = []
        for c in candidates.values():
            d_score = 0.0
            if geo is not None:
                distance = distance_to(c.context, geo)
                if distance is None or distance > geo.radius_km:
                    continue
                c.distance_km = distance
                d_score = distance_score(distance, geo.radius_km)
            score = composite_score(SignalScores(text=c.text, vector=c.vector, distance=d_score), effective)
            scored.append(RankedContext(context=c.context, score=score, distance_km=c.distance_km))

        return rank(scored, query.min_score, query.top_k), degraded
