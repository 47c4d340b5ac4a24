"""Pydantic schemas for API request/response validation."""

from .envelopes import (
    AnswerStyle,
    ContextAttributes,
    Glossary,
    OpenMapEnvelope,
    RetrievalPolicy,
    TrustSafety,
)
from .profile import ResolvedProfile
from .retrieval import (
    Citation,
    ContextItem,
    ContextListResponse,
    ContextRetrievalResponse,
    IntentFiltersApplied,
    PlaceRetrieveRequest,
    RetrievalMethod,
    RetrieveRequest,
)

__all__ = [
    # Open-map envelopes
    "OpenMapEnvelope",
    "ContextAttributes",
    "AnswerStyle",
    "RetrievalPolicy",
    "TrustSafety",
    "Glossary",
    # Profiles
    "ResolvedProfile",
    # Retrieval
    "RetrievalMethod",
    "RetrieveRequest",
    "PlaceRetrieveRequest",
    "ContextItem",
    "Citation",
    "IntentFiltersApplied",
    "ContextRetrievalResponse",
    "ContextListResponse",
]
