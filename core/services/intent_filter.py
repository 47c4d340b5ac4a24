"""Intent filter resolution: which structural filtering strategy applies to a query."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IntentFilterStrategy(str, Enum):
    SCOPE_AND_ACTION = "scope_and_action"
    SCOPE_ONLY = "scope_only"
    ACTION_ONLY = "action_only"
    COMBINED = "combined"
    TEXT_ONLY = "text_only"


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


@dataclass(frozen=True)
class IntentFilters:
    """Intent hints supplied with a request. Blank strings count as absent."""

    scope: Optional[str] = None
    action: Optional[str] = None
    detail: Optional[str] = None

    @property
    def has_scope(self) -> bool:
        return _present(self.scope)

    @property
    def has_action(self) -> bool:
        return _present(self.action)

    @property
    def has_detail(self) -> bool:
        return _present(self.detail)


def resolve_intent_strategy(filters: IntentFilters) -> IntentFilterStrategy:
    """Classify the filtering strategy. First match wins."""
    if filters.has_scope and filters.has_action:
        return IntentFilterStrategy.SCOPE_AND_ACTION
    if filters.has_scope:
        return IntentFilterStrategy.SCOPE_ONLY
    if filters.has_action:
        return IntentFilterStrategy.ACTION_ONLY
    if filters.has_detail:
        return IntentFilterStrategy.COMBINED
    return IntentFilterStrategy.TEXT_ONLY


def applies_scope_filter(strategy: IntentFilterStrategy) -> bool:
    return strategy in (IntentFilterStrategy.SCOPE_AND_ACTION, IntentFilterStrategy.SCOPE_ONLY)


def applies_action_filter(strategy: IntentFilterStrategy) -> bool:
    return strategy in (IntentFilterStrategy.SCOPE_AND_ACTION, IntentFilterStrategy.ACTION_ONLY)
