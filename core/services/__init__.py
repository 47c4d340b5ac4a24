"""
Core services for context retrieval.

Services encapsulate the business logic: intent filter resolution,
instruction profile resolution, hybrid context retrieval, response assembly
and usage statistics.
"""

from .context_retrieval_service import ContextRetrievalService
from .context_store import CandidateFilter, ContextStore, ContextStoreError, GeoBounds
from .intent_filter import IntentFilters, IntentFilterStrategy, resolve_intent_strategy
from .profile_resolver import (
    InstructionProfileResolver,
    ProfileConfigurationError,
    ProfileRequest,
    ProfileResolutionError,
)
from .profile_store import ProfileStore
from .response_assembler import ResponseAssembler
from .retrieval_service import (
    HybridRetrievalEngine,
    RetrievalError,
    RetrievalUnavailableError,
)
from .stats_service import StatsService, UsageEvent, UsageStatsRecorder

__all__ = [
    # Orchestration
    "ContextRetrievalService",
    # Intent filters
    "IntentFilters",
    "IntentFilterStrategy",
    "resolve_intent_strategy",
    # Profiles
    "ProfileStore",
    "InstructionProfileResolver",
    "ProfileRequest",
    "ProfileResolutionError",
    "ProfileConfigurationError",
    # Retrieval
    "ContextStore",
    "ContextStoreError",
    "CandidateFilter",
    "GeoBounds",
    "HybridRetrievalEngine",
    "RetrievalError",
    "RetrievalUnavailableError",
    "ResponseAssembler",
    # Usage stats
    "StatsService",
    "UsageEvent",
    "UsageStatsRecorder",
]
