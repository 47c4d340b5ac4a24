"""Pydantic schemas for the context retrieval API."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from schemas.envelopes import ContextAttributes


class RetrievalMethod(str, Enum):
    """How the returned contexts were selected."""

    STRUCTURED = "structured"
    HYBRID = "hybrid"
    FALLBACK = "fallback"


class RetrieveRequest(BaseModel):
    """Request to retrieve ranked contexts for a query."""

    text_query: str = Field(..., min_length=1, max_length=1000)
    conversation_history: Optional[Union[str, List[Any]]] = None
    # "simantic_query" is accepted for older clients
    semantic_augment: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("semantic_augment", "simantic_query"),
    )
    intent_scope: Optional[str] = Field(None, max_length=100)
    intent_action: Optional[str] = Field(None, max_length=100)
    intent_detail: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=200)

    # Profile rule matching
    channel: Optional[str] = Field(None, max_length=50)
    user_segment: Optional[str] = Field(None, max_length=50)

    top_k: int = Field(default=3, ge=1, le=20)
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    fulltext_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.5, ge=0.0, le=1.0)

    # Place queries
    lat: Optional[float] = Field(None, ge=-90, le=90)
    long: Optional[float] = Field(None, ge=-180, le=180)
    max_distance_km: float = Field(default=5.0, ge=0.0)
    distance_weight: float = Field(default=1.0, ge=0.0, le=1.0)

    timeout_ms: Optional[int] = Field(
        default=None,
        ge=1,
        le=60000,
        description="Request deadline; falls back to RETRIEVAL_TIMEOUT_SECONDS",
    )

    # Passed through unchanged for downstream prompt templating
    prompt_key: Optional[str] = Field(None, max_length=200)
    prompt_params: Optional[dict[str, Any]] = None

    @field_validator(
        "semantic_augment",
        "intent_scope",
        "intent_action",
        "intent_detail",
        "category",
        "channel",
        "user_segment",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_geo_pair(self):
        if (self.lat is None) != (self.long is None):
            raise ValueError("lat and long must be supplied together")
        return self

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.long is not None


class PlaceRetrieveRequest(RetrieveRequest):
    """Place-flavored retrieval: a geo point is required."""

    lat: float = Field(..., ge=-90, le=90)
    long: float = Field(..., ge=-180, le=180)


class ContextItem(BaseModel):
    """A context as returned to callers (no embedding)."""

    id: UUID
    tenant_id: str
    type: str
    title: str
    body: str
    instruction: Optional[str] = None
    attributes: ContextAttributes = Field(default_factory=ContextAttributes)
    trust_level: Optional[int] = 0
    status: Optional[str] = "active"
    language: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    intent_scopes: List[str] = Field(default_factory=list)
    intent_actions: List[str] = Field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    score: Optional[float] = None
    distance_km: Optional[float] = None

    class Config:
        from_attributes = True

    @field_validator("attributes", mode="before")
    @classmethod
    def wrap_attributes(cls, v):
        if v is None or isinstance(v, dict):
            return ContextAttributes.from_raw(v)
        return v

    @field_validator("keywords", "intent_scopes", "intent_actions", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return list(v) if v else []


class Citation(BaseModel):
    context_id: UUID
    snippet: str
    score: Optional[float] = None


class IntentFiltersApplied(BaseModel):
    """Audit trail of the filters actually applied to a request."""

    scope_filter: bool
    action_filter: bool
    combined_query: str


class ContextRetrievalResponse(BaseModel):
    """Ranked contexts plus the instruction the downstream agent must follow."""

    contexts: List[ContextItem]
    citations: List[Citation]
    profile_id: str
    ai_instruction_message: str
    retrieval_method: RetrievalMethod
    latency_ms: float
    intent_filters_applied: IntentFiltersApplied


class ContextListResponse(BaseModel):
    """Paginated list of a tenant's contexts."""

    items: List[ContextItem]
    total: int
    page: int
    page_size: int
