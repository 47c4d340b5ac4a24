"""
Instruction profile resolution.

Picks exactly one instruction profile per request:

1. Load the tenant's profile targets and keep those whose every field is a
   wildcard or equals the request value (case-sensitive).
2. Highest priority wins; ties go to the most specific rule (fewest
   wildcards), then to the most recently inserted rule.
3. If nothing matches, or the winning rule points at a missing or inactive
   profile, use the tenant default: an active profile no target references
   (any active profile if every one is targeted), highest version first,
   then most recently updated.
4. No active profile at all is a tenant configuration error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Set, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from core.services.profile_store import ProfileStore
from models.instruction_profile import InstructionProfile, ProfileTarget
from schemas.profile import ResolvedProfile

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ProfileResolutionError(Exception):
    """Base exception for profile resolution errors (profile store unavailable)."""

    pass


class ProfileConfigurationError(ProfileResolutionError):
    """The tenant has no active instruction profile."""

    pass


@dataclass(frozen=True)
class AnyValue:
    """Wildcard: matches any request value, including an absent one."""

    def matches(self, value: Optional[str]) -> bool:
        return True


@dataclass(frozen=True)
class Exact:
    """Matches one value exactly. Never matches an absent request value."""

    value: str

    def matches(self, value: Optional[str]) -> bool:
        return value is not None and value == self.value


Matcher = Union[AnyValue, Exact]


def matcher_for(stored: Optional[str]) -> Matcher:
    """Stored ``''``/NULL is a wildcard, anything else an exact match."""
    if stored is None or stored == "":
        return AnyValue()
    return Exact(stored)


@dataclass(frozen=True)
class ProfileRequest:
    """The request shape profile targets are matched against."""

    intent_scope: Optional[str] = None
    intent_action: Optional[str] = None
    channel: Optional[str] = None
    user_segment: Optional[str] = None


@dataclass(frozen=True)
class TargetRule:
    id: int
    profile_id: UUID
    priority: int
    intent_scope: Matcher
    intent_action: Matcher
    channel: Matcher
    user_segment: Matcher

    @classmethod
    def from_model(cls, target: ProfileTarget) -> "TargetRule":
        return cls(
            id=target.id or 0,
            profile_id=target.profile_id,
            priority=target.priority or 0,
            intent_scope=matcher_for(target.intent_scope),
            intent_action=matcher_for(target.intent_action),
            channel=matcher_for(target.channel),
            user_segment=matcher_for(target.user_segment),
        )

    @property
    def specificity(self) -> int:
        """Number of exact (non-wildcard) fields."""
        fields = (self.intent_scope, self.intent_action, self.channel, self.user_segment)
        return sum(1 for f in fields if isinstance(f, Exact))

    def matches(self, request: ProfileRequest) -> bool:
        return (
            self.intent_scope.matches(request.intent_scope)
            and self.intent_action.matches(request.intent_action)
            and self.channel.matches(request.channel)
            and self.user_segment.matches(request.user_segment)
        )


def select_target(rules: Iterable[TargetRule], request: ProfileRequest) -> Optional[TargetRule]:
    """Winning rule for a request, or None if no rule matches."""
    matching = [rule for rule in rules if rule.matches(request)]
    if not matching:
        return None
    return max(matching, key=lambda rule: (rule.priority, rule.specificity, rule.id))


def pick_default_profile(
    profiles: Sequence[InstructionProfile], targeted_ids: Set[UUID]
) -> Optional[InstructionProfile]:
    """The tenant's default active profile, or None if none is active."""
    active = [p for p in profiles if p.is_active]
    if not active:
        return None
    untargeted = [p for p in active if p.id not in targeted_ids]
    pool = untargeted or active
    return max(pool, key=lambda p: (p.version or 0, p.updated_at or _EPOCH))


class InstructionProfileResolver:
    """Resolves the instruction profile that governs a request."""

    def __init__(self, store: ProfileStore):
        self.store = store

    async def resolve(self, tenant_id: str, request: ProfileRequest) -> ResolvedProfile:
        """
        Resolve one profile for ``tenant_id``.

        Raises:
            ProfileConfigurationError: the tenant has no active profile
            ProfileResolutionError: the profile store could not be read
        """
        try:
            targets = await self.store.list_targets(tenant_id)
            rules = [TargetRule.from_model(t) for t in targets]

            winner = select_target(rules, request)
            if winner is not None:
                profile = await self.store.get_profile(tenant_id, winner.profile_id)
                if profile is not None and profile.is_active:
                    return ResolvedProfile.from_model(profile, matched_target_id=winner.id)
                logger.warning(
                    f"Profile target {winner.id} for tenant {tenant_id} points at "
                    f"{'an inactive' if profile is not None else 'a missing'} profile {winner.profile_id}, "
                    "using default profile"
                )

            profiles = await self.store.list_active_profiles(tenant_id)
        except (SQLAlchemyError, OSError) as e:
            raise ProfileResolutionError(f"Profile store unavailable: {e}") from e

        default = pick_default_profile(profiles, {rule.profile_id for rule in rules})
        if default is None:
            raise ProfileConfigurationError(f"No active instruction profile for tenant {tenant_id}")
        return ResolvedProfile.from_model(default)
