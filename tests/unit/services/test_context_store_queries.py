"""ContextStore and ProfileStore against PostgreSQL (skipped when unreachable)."""

import pytest
from sqlalchemy import and_
from sqlalchemy.dialects import postgresql

from core.embeddings import hash_embedding
from core.config import settings
from core.services.context_store import (
    CandidateFilter,
    ContextStore,
    GeoBounds,
    candidate_conditions,
    or_query_text,
)
from core.services.profile_resolver import InstructionProfileResolver, ProfileConfigurationError, ProfileRequest
from core.services.profile_store import ProfileStore
from models.context import Category, ContextCategory
from tests.factories import ContextFactory, InstructionProfileFactory, PlaceFactory, ProfileTargetFactory


def test_or_query_text():
    assert or_query_text("Best PIZZA, downtown!") == "best or pizza or downtown"
    assert or_query_text("  ?! ") == ""


async def _add(session_factory, *objects):
    async with session_factory() as session:
        session.add_all(objects)
        await session.commit()


class TestContextStore:
    @pytest.mark.asyncio
    async def test_fulltext_is_tenant_scoped_and_active_only(self, db_session_factory, tenant_id):
        mine = ContextFactory(title="Pizza place", body="Wood fired pizza")
        archived = ContextFactory(title="Old pizza", status="archived")
        other_tenant = ContextFactory(tenant_id="someone_else", title="Pizza elsewhere")
        await _add(db_session_factory, mine, archived, other_tenant)

        results = await ContextStore(db_session_factory).fulltext_search(CandidateFilter(tenant_id), "pizza", 10)

        assert [c.id for c, _ in results] == [mine.id]
        assert 0.0 < results[0][1] < 1.0

    @pytest.mark.asyncio
    async def test_fulltext_blank_query(self, db_session_factory, tenant_id):
        assert await ContextStore(db_session_factory).fulltext_search(CandidateFilter(tenant_id), "!!", 10) == []

    @pytest.mark.asyncio
    async def test_vector_search_scores_identical_vector_highest(self, db_session_factory, tenant_id):
        dim = settings.EMBEDDING_DIM
        close = ContextFactory(title="close", embedding=hash_embedding("sushi bar", dim))
        far = ContextFactory(title="far", embedding=hash_embedding("tire repair shop", dim))
        unembedded = ContextFactory(title="none")
        await _add(db_session_factory, close, far, unembedded)

        results = await ContextStore(db_session_factory).vector_search(
            CandidateFilter(tenant_id), hash_embedding("sushi bar", dim), 10
        )

        assert [c.id for c, _ in results] == [close.id, far.id]
        assert results[0][1] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_nearby_respects_radius_and_type(self, db_session_factory, tenant_id):
        inside = PlaceFactory(title="inside", latitude=37.7750, longitude=-122.4195)
        outside = PlaceFactory(title="outside", latitude=37.8716, longitude=-122.2727)
        document = ContextFactory(title="doc with coords", latitude=37.7750, longitude=-122.4195)
        await _add(db_session_factory, inside, outside, document)

        f = CandidateFilter(tenant_id, geo=GeoBounds(37.7749, -122.4194, 1.0))
        results = await ContextStore(db_session_factory).nearby(f, 10)

        assert [c.id for c, _ in results] == [inside.id]
        assert results[0][1] < 0.1

    @pytest.mark.asyncio
    async def test_structural_and_category_filters(self, db_session_factory, tenant_id):
        tagged = ContextFactory(title="tagged", intent_scopes=["dining"], trust_level=5)
        tagged_low = ContextFactory(title="tagged low", intent_scopes=["dining"], trust_level=1)
        untagged = ContextFactory(title="untagged")
        category = Category(tenant_id=tenant_id, name="Italian Food", slug="italian")
        await _add(db_session_factory, tagged, tagged_low, untagged, category)
        await _add(
            db_session_factory,
            ContextCategory(tenant_id=tenant_id, context_id=tagged_low.id, category_id=category.id),
        )
        store = ContextStore(db_session_factory)

        structured = await store.structured_candidates(CandidateFilter(tenant_id, intent_scope="dining"), 10)
        assert [c.id for c in structured] == [tagged.id, tagged_low.id]

        by_slug = await store.recent(CandidateFilter(tenant_id, category="italian"), 10)
        by_name = await store.recent(CandidateFilter(tenant_id, category="ital"), 10)
        assert [c.id for c in by_slug] == [tagged_low.id]
        assert [c.id for c in by_name] == [tagged_low.id]

    @pytest.mark.asyncio
    async def test_list_and_get(self, db_session_factory, tenant_id):
        contexts = [ContextFactory(title=f"Menu {i}") for i in range(3)]
        await _add(db_session_factory, *contexts, ContextFactory(tenant_id="someone_else"))
        store = ContextStore(db_session_factory)

        items, total = await store.list_contexts(tenant_id, q="menu", page=1, page_size=2)

        assert total == 3
        assert len(items) == 2
        assert (await store.get(tenant_id, contexts[0].id)).title == "Menu 0"
        assert await store.get("someone_else", contexts[0].id) is None


class TestProfileResolution:
    @pytest.mark.asyncio
    async def test_targeted_profile_wins_over_default(self, db_session_factory, tenant_id):
        default = InstructionProfileFactory(name="default")
        dining = InstructionProfileFactory(name="dining")
        await _add(
            db_session_factory,
            default,
            dining,
            ProfileTargetFactory(id=None, profile_id=dining.id, intent_scope="dining"),
        )
        resolver = InstructionProfileResolver(ProfileStore(db_session_factory))

        targeted = await resolver.resolve(tenant_id, ProfileRequest(intent_scope="dining"))
        fallback = await resolver.resolve(tenant_id, ProfileRequest(intent_scope="travel"))

        assert targeted.id == str(dining.id)
        assert targeted.matched_target_id is not None
        assert fallback.id == str(default.id)
        assert fallback.is_default

    @pytest.mark.asyncio
    async def test_no_active_profile(self, db_session_factory, tenant_id):
        await _add(db_session_factory, InstructionProfileFactory(is_active=False))

        with pytest.raises(ProfileConfigurationError):
            await InstructionProfileResolver(ProfileStore(db_session_factory)).resolve(tenant_id, ProfileRequest())


class TestPlaceCoordinates:
    """Places may carry coordinates in the columns or only in ``attributes``."""

    def test_geo_conditions_read_attribute_coordinates(self):
        f = CandidateFilter("tenant_test", geo=GeoBounds(37.7749, -122.4194, 1.0))

        sql = str(and_(*candidate_conditions(f)).compile(dialect=postgresql.dialect()))

        assert "jsonb_typeof" in sql
        assert "contexts.attributes" in sql

    @pytest.mark.asyncio
    async def test_attribute_only_place_is_a_candidate(self, db_session_factory, tenant_id):
        attr_only = PlaceFactory(
            title="Corner coffee", latitude=None, longitude=None, attributes={"lat": 37.7750, "lon": -122.4195}
        )
        attr_far = PlaceFactory(
            title="Coffee far away", latitude=None, longitude=None, attributes={"lat": 37.8716, "lon": -122.2727}
        )
        attr_text = PlaceFactory(
            title="Coffee with text coords", latitude=None, longitude=None, attributes={"lat": "37.77", "lon": "x"}
        )
        await _add(db_session_factory, attr_only, attr_far, attr_text)
        store = ContextStore(db_session_factory)
        f = CandidateFilter(tenant_id, geo=GeoBounds(37.7749, -122.4194, 1.0))

        nearby = await store.nearby(f, 10)
        matched = await store.fulltext_search(f, "coffee", 10)

        assert [c.id for c, _ in nearby] == [attr_only.id]
        assert nearby[0][1] < 0.1
        assert [c.id for c, _ in matched] == [attr_only.id]
