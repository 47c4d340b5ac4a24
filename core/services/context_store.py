"""
Read access to tenant contexts for retrieval.

Every query is hard-filtered by tenant, active status, optional category,
optional structural intent tags and, for place queries, by the search radius.
Each method opens its own session so the retrieval engine can run them
concurrently.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import Float, and_, case, func, literal_column, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import defer

from core.services.scoring import EARTH_RADIUS_KM, MIN_RADIUS_KM, clamp, vector_score
from models.context import Category, Context, ContextCategory, ContextType

_TS_CONFIG = literal_column("'simple'::regconfig")
# ts_rank_cd normalization 32 maps rank into [0, 1) as rank / (rank + 1)
TS_RANK_NORMALIZATION = 32

_WORD = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True)
class GeoBounds:
    lat: float
    lon: float
    max_distance_km: float

    @property
    def radius_km(self) -> float:
        return max(self.max_distance_km, MIN_RADIUS_KM)


@dataclass(frozen=True)
class CandidateFilter:
    """Hard filters applied to every retrieval sub-query."""

    tenant_id: str
    category: Optional[str] = None
    intent_scope: Optional[str] = None
    intent_action: Optional[str] = None
    geo: Optional[GeoBounds] = None

    @property
    def has_structural_filter(self) -> bool:
        return bool(self.intent_scope or self.intent_action)


def _attribute_number(key: str):
    """Numeric ``attributes[key]``, NULL when missing or not a JSON number."""
    value = Context.attributes[key]
    return case((func.jsonb_typeof(value) == "number", value.astext.cast(Float)), else_=None)


def _has_column_coordinates():
    return and_(Context.latitude.isnot(None), Context.longitude.isnot(None))


def place_latitude_sql():
    """A context's latitude: the column when both columns are set, else ``attributes.lat``."""
    return case((_has_column_coordinates(), Context.latitude), else_=_attribute_number("lat"))


def place_longitude_sql():
    return case((_has_column_coordinates(), Context.longitude), else_=_attribute_number("lon"))


def haversine_sql(lat: float, lon: float):
    """SQL expression: distance in km from (lat, lon) to a context's coordinates."""
    place_lat = place_latitude_sql()
    place_lon = place_longitude_sql()
    dlat = func.radians(place_lat - lat)
    dlon = func.radians(place_lon - lon)
    a = func.power(func.sin(dlat / 2), 2) + func.cos(func.radians(lat)) * func.cos(
        func.radians(place_lat)
    ) * func.power(func.sin(dlon / 2), 2)
    return 2 * EARTH_RADIUS_KM * func.asin(func.sqrt(func.least(1.0, a)))


def _search_vector():
    title = func.setweight(func.to_tsvector(_TS_CONFIG, func.coalesce(Context.title, "")), literal_column("'A'"))
    body = func.setweight(func.to_tsvector(_TS_CONFIG, func.coalesce(Context.body, "")), literal_column("'B'"))
    return title.op("||")(body)


def or_query_text(text: str) -> str:
    """Words of ``text`` joined for websearch_to_tsquery as alternatives."""
    return " or ".join(_WORD.findall(text.lower()))


def candidate_conditions(f: CandidateFilter) -> list:
    conditions = [Context.tenant_id == f.tenant_id, Context.status == "active"]

    if f.intent_scope:
        conditions.append(Context.intent_scopes.any(f.intent_scope))
    if f.intent_action:
        conditions.append(Context.intent_actions.any(f.intent_action))

    if f.category:
        category_match = (
            select(ContextCategory.context_id)
            .join(Category, Category.id == ContextCategory.category_id)
            .where(
                ContextCategory.context_id == Context.id,
                ContextCategory.tenant_id == f.tenant_id,
                or_(Category.slug == f.category, Category.name.ilike(f"%{f.category}%")),
            )
            .exists()
        )
        conditions.append(category_match)

    if f.geo is not None:
        conditions.extend(
            [
                Context.type == ContextType.PLACE.value,
                place_latitude_sql().isnot(None),
                place_longitude_sql().isnot(None),
                haversine_sql(f.geo.lat, f.geo.lon) <= f.geo.radius_km,
            ]
        )
    return conditions


class ContextStoreError(Exception):
    """Base exception for context store errors."""

    pass


class ContextStore:
    """Tenant-scoped context queries used by retrieval and the contexts API."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def fulltext_search(self, f: CandidateFilter, text: str, limit: int) -> List[Tuple[Context, float]]:
        """Matching contexts with their full-text score in [0, 1), best first."""
        query_text = or_query_text(text)
        if not query_text:
            return []

        vector = _search_vector()
        tsquery = func.websearch_to_tsquery(_TS_CONFIG, query_text)
        score = func.ts_rank_cd(vector, tsquery, TS_RANK_NORMALIZATION).label("score")
        stmt = (
            select(Context, score)
            .options(defer(Context.embedding))
            .where(*candidate_conditions(f), vector.op("@@")(tsquery))
            .order_by(score.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [(row[0], clamp(float(row[1] or 0.0))) for row in result.all()]

    async def vector_search(
        self, f: CandidateFilter, embedding: List[float], limit: int
    ) -> List[Tuple[Context, float]]:
        """Nearest contexts by cosine distance, scored into [0, 1]."""
        distance = Context.embedding.cosine_distance(embedding).label("distance")
        stmt = (
            select(Context, distance)
            .options(defer(Context.embedding))
            .where(*candidate_conditions(f), Context.embedding.isnot(None))
            .order_by(distance)
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [(row[0], vector_score(float(row[1]))) for row in result.all() if row[1] is not None]

    async def nearby(self, f: CandidateFilter, limit: int) -> List[Tuple[Context, float]]:
        """Places inside the filter's radius with their distance in km, closest first."""
        if f.geo is None:
            raise ContextStoreError("nearby() requires a geo filter")
        distance = haversine_sql(f.geo.lat, f.geo.lon).label("distance_km")
        stmt = (
            select(Context, distance)
            .options(defer(Context.embedding))
            .where(*candidate_conditions(f))
            .order_by(distance)
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [(row[0], float(row[1])) for row in result.all()]

    async def structured_candidates(self, f: CandidateFilter, limit: int) -> List[Context]:
        """Contexts passing the hard filters, highest trust and newest first."""
        return await self._ordered(f, limit)

    async def recent(self, f: CandidateFilter, limit: int) -> List[Context]:
        """Plain trust/recency ordered slice used when nothing narrows the query."""
        return await self._ordered(f, limit)

    async def _ordered(self, f: CandidateFilter, limit: int) -> List[Context]:
        stmt = (
            select(Context)
            .options(defer(Context.embedding))
            .where(*candidate_conditions(f))
            .order_by(Context.trust_level.desc(), Context.updated_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get(self, tenant_id: str, context_id: UUID) -> Optional[Context]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Context)
                .options(defer(Context.embedding))
                .where(Context.tenant_id == tenant_id, Context.id == context_id)
            )
            return result.scalar_one_or_none()

    async def list_contexts(
        self,
        tenant_id: str,
        q: Optional[str] = None,
        context_type: Optional[str] = None,
        status: Optional[str] = None,
        intent_scope: Optional[str] = None,
        intent_action: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Context], int]:
        """One page of a tenant's contexts, newest first, plus the total count."""
        conditions = [Context.tenant_id == tenant_id]
        if q:
            pattern = f"%{q}%"
            conditions.append(or_(Context.title.ilike(pattern), Context.body.ilike(pattern)))
        if context_type:
            conditions.append(Context.type == context_type)
        if status:
            conditions.append(Context.status == status)
        if intent_scope:
            conditions.append(Context.intent_scopes.any(intent_scope))
        if intent_action:
            conditions.append(Context.intent_actions.any(intent_action))

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Context).where(*conditions))
            result = await session.execute(
                select(Context)
                .options(defer(Context.embedding))
                .where(*conditions)
                .order_by(Context.updated_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total or 0
