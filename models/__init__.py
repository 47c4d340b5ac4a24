"""Database models for the context retrieval service."""

from .base import Base
from .context import Category, Context, ContextCategory, ContextType
from .instruction_profile import InstructionProfile, ProfileTarget
from .usage_stats import ContextUsageStats, SummaryStats
from .request_log import RagRequestLog

__all__ = [
    "Base",
    "Category",
    "Context",
    "ContextCategory",
    "ContextType",
    "InstructionProfile",
    "ProfileTarget",
    "ContextUsageStats",
    "SummaryStats",
    "RagRequestLog",
]
