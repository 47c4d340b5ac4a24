"""Tests for instruction profile resolution."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.services.profile_resolver import (
    AnyValue,
    Exact,
    InstructionProfileResolver,
    ProfileConfigurationError,
    ProfileRequest,
    ProfileResolutionError,
    TargetRule,
    matcher_for,
    pick_default_profile,
    select_target,
)
from tests.factories import InstructionProfileFactory, ProfileTargetFactory


@pytest.fixture
def mock_store():
    """Create a mock ProfileStore."""
    store = MagicMock()
    store.list_targets = AsyncMock(return_value=[])
    store.get_profile = AsyncMock(return_value=None)
    store.list_active_profiles = AsyncMock(return_value=[])
    return store


@pytest.fixture
def resolver(mock_store):
    return InstructionProfileResolver(mock_store)


def _rule(**kwargs) -> TargetRule:
    return TargetRule.from_model(ProfileTargetFactory(**kwargs))


class TestMatchers:
    """Wildcard and exact field matchers."""

    def test_empty_and_null_are_wildcards(self):
        assert matcher_for("") == AnyValue()
        assert matcher_for(None) == AnyValue()

    def test_value_is_exact(self):
        assert matcher_for("web") == Exact("web")

    def test_wildcard_matches_absent_value(self):
        assert AnyValue().matches(None)
        assert AnyValue().matches("anything")

    def test_exact_never_matches_absent_value(self):
        assert not Exact("web").matches(None)

    def test_exact_is_case_sensitive(self):
        assert Exact("dining").matches("dining")
        assert not Exact("dining").matches("Dining")


class TestSelectTarget:
    """Rule matching and tie-breaking."""

    def test_no_rules_no_match(self):
        assert select_target([], ProfileRequest(channel="web")) is None

    def test_rule_with_unmatched_field_is_skipped(self):
        rules = [_rule(id=1, channel="sms")]
        assert select_target(rules, ProfileRequest(channel="web")) is None

    def test_highest_priority_wins(self):
        low = _rule(id=1, priority=1, intent_scope="dining", channel="web")
        high = _rule(id=2, priority=5)
        winner = select_target([low, high], ProfileRequest(intent_scope="dining", channel="web"))
        assert winner.id == 2

    def test_more_specific_wins_on_equal_priority_regardless_of_order(self):
        """The older, more specific rule beats the newer, more generic one."""
        specific = _rule(id=1, priority=5, intent_scope="dining", channel="web")
        generic = _rule(id=2, priority=5, channel="web")
        request = ProfileRequest(intent_scope="dining", channel="web")

        assert select_target([specific, generic], request).id == 1
        assert select_target([generic, specific], request).id == 1

    def test_most_recent_wins_on_full_tie(self):
        first = _rule(id=1, priority=3, channel="web")
        second = _rule(id=2, priority=3, user_segment="vip")
        winner = select_target([first, second], ProfileRequest(channel="web", user_segment="vip"))
        assert winner.id == 2

    def test_specificity_counts_exact_fields(self):
        rule = _rule(intent_scope="a", intent_action="b", channel="", user_segment="d")
        assert rule.specificity == 3


class TestPickDefaultProfile:
    """Tenant default profile selection."""

    def test_none_when_no_active_profile(self):
        inactive = InstructionProfileFactory(is_active=False)
        assert pick_default_profile([inactive], set()) is None

    def test_prefers_untargeted_profile(self):
        targeted = InstructionProfileFactory(version=9)
        untargeted = InstructionProfileFactory(version=1)
        assert pick_default_profile([targeted, untargeted], {targeted.id}) is untargeted

    def test_uses_targeted_profile_when_all_are_targeted(self):
        only = InstructionProfileFactory()
        assert pick_default_profile([only], {only.id}) is only

    def test_highest_version_then_latest_update(self):
        now = datetime.now(timezone.utc)
        old_v2 = InstructionProfileFactory(version=2, updated_at=now - timedelta(days=1))
        new_v2 = InstructionProfileFactory(version=2, updated_at=now)
        v1 = InstructionProfileFactory(version=1, updated_at=now + timedelta(days=1))
        assert pick_default_profile([v1, old_v2, new_v2], set()) is new_v2


class TestInstructionProfileResolver:
    """InstructionProfileResolver.resolve against a mocked store."""

    @pytest.mark.asyncio
    async def test_returns_profile_of_winning_rule(self, resolver, mock_store, tenant_id):
        profile = InstructionProfileFactory(ai_instruction_message="Be brief.")
        target = ProfileTargetFactory(id=7, profile_id=profile.id, channel="web")
        mock_store.list_targets.return_value = [target]
        mock_store.get_profile.return_value = profile

        resolved = await resolver.resolve(tenant_id, ProfileRequest(channel="web"))

        assert resolved.id == str(profile.id)
        assert resolved.ai_instruction_message == "Be brief."
        assert resolved.matched_target_id == 7
        assert not resolved.is_default
        mock_store.get_profile.assert_awaited_once_with(tenant_id, profile.id)

    @pytest.mark.asyncio
    async def test_falls_back_to_default_when_no_rule_matches(self, resolver, mock_store, tenant_id):
        targeted = InstructionProfileFactory()
        default = InstructionProfileFactory(ai_instruction_message="Default instructions.")
        mock_store.list_targets.return_value = [ProfileTargetFactory(profile_id=targeted.id, channel="sms")]
        mock_store.list_active_profiles.return_value = [targeted, default]

        resolved = await resolver.resolve(tenant_id, ProfileRequest(channel="web"))

        assert resolved.id == str(default.id)
        assert resolved.is_default
        mock_store.get_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_when_referenced_profile_inactive(self, resolver, mock_store, tenant_id, caplog):
        inactive = InstructionProfileFactory(is_active=False)
        default = InstructionProfileFactory()
        mock_store.list_targets.return_value = [ProfileTargetFactory(profile_id=inactive.id)]
        mock_store.get_profile.return_value = inactive
        mock_store.list_active_profiles.return_value = [default]

        with caplog.at_level(logging.WARNING, logger="core.services.profile_resolver"):
            resolved = await resolver.resolve(tenant_id, ProfileRequest())

        assert resolved.id == str(default.id)
        assert "inactive" in caplog.text

    @pytest.mark.asyncio
    async def test_falls_back_when_referenced_profile_missing(self, resolver, mock_store, tenant_id):
        default = InstructionProfileFactory()
        mock_store.list_targets.return_value = [ProfileTargetFactory()]
        mock_store.get_profile.return_value = None
        mock_store.list_active_profiles.return_value = [default]

        resolved = await resolver.resolve(tenant_id, ProfileRequest())

        assert resolved.id == str(default.id)

    @pytest.mark.asyncio
    async def test_no_active_profile_is_configuration_error(self, resolver, mock_store, tenant_id):
        mock_store.list_active_profiles.return_value = []

        with pytest.raises(ProfileConfigurationError):
            await resolver.resolve(tenant_id, ProfileRequest())

    @pytest.mark.asyncio
    async def test_store_failure_is_resolution_error_not_configuration(self, resolver, mock_store, tenant_id):
        mock_store.list_targets.side_effect = OSError("connection refused")

        with pytest.raises(ProfileResolutionError) as exc_info:
            await resolver.resolve(tenant_id, ProfileRequest())

        assert not isinstance(exc_info.value, ProfileConfigurationError)

    @pytest.mark.asyncio
    async def test_envelopes_are_typed(self, resolver, mock_store, tenant_id):
        profile = InstructionProfileFactory(
            answer_style={"tone": "formal", "emoji": False},
            retrieval_policy={"top_k": 5},
        )
        mock_store.list_active_profiles.return_value = [profile]

        resolved = await resolver.resolve(tenant_id, ProfileRequest())

        assert resolved.answer_style.tone == "formal"
        assert resolved.answer_style.extra == {"emoji": False}
        assert resolved.retrieval_policy.top_k == 5
