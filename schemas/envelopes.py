"""
Typed envelopes for the open JSON maps stored on contexts and profiles.

Each envelope declares the keys the service knows about and keeps every
other key in ``extra`` so nothing written by the admin side is lost. On the
wire (and back into the database) an envelope serializes to the original
flat map.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_serializer


class OpenMapEnvelope(BaseModel):
    """Known optional fields plus an ``extra`` bag for everything else."""

    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @classmethod
    def known_fields(cls) -> set[str]:
        return {name for name in cls.model_fields if name != "extra"}

    @classmethod
    def from_raw(cls, raw: Optional[dict[str, Any]]):
        """Split a raw map into known fields and the extra bag.

        Known keys holding values of the wrong type are kept verbatim in
        ``extra`` instead of failing the whole envelope.
        """
        remaining = dict(raw or {})
        known = {key: remaining.pop(key) for key in list(remaining) if key in cls.known_fields()}
        try:
            return cls(**known, extra=remaining)
        except ValidationError as e:
            bad_keys = {err["loc"][0] for err in e.errors() if err.get("loc")}
            for key in bad_keys:
                if key in known:
                    remaining[key] = known.pop(key)
            return cls(**known, extra=remaining)

    def to_raw(self) -> dict[str, Any]:
        data = {key: getattr(self, key) for key in self.known_fields() if getattr(self, key) is not None}
        return {**self.extra, **data}

    @model_serializer(mode="plain")
    def _serialize(self) -> dict[str, Any]:
        return self.to_raw()


class ContextAttributes(OpenMapEnvelope):
    """Attributes of a context. Geo fields only mean something for places."""

    lat: Optional[float] = None
    lon: Optional[float] = None
    rating: Optional[float] = None
    price_tier: Optional[Union[int, str]] = None
    tags: Optional[list[str]] = None
    amenities: Optional[list[str]] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    url: Optional[str] = None


class AnswerStyle(OpenMapEnvelope):
    tone: Optional[str] = None
    format: Optional[str] = None
    language: Optional[str] = None
    max_words: Optional[int] = None
    citation_style: Optional[str] = None


class RetrievalPolicy(OpenMapEnvelope):
    top_k: Optional[int] = None
    min_score: Optional[float] = None
    prefer_types: Optional[list[str]] = None
    require_citations: Optional[bool] = None


class TrustSafety(OpenMapEnvelope):
    refuse_topics: Optional[list[str]] = None
    disclaimer: Optional[str] = None
    redact_pii: Optional[bool] = None


class Glossary(OpenMapEnvelope):
    terms: Optional[dict[str, str]] = None
