"""
Context model: a unit of retrievable tenant content.

Contexts are written by the content-management side of the platform and are
read-only to the retrieval engine. Full-text search runs over title/body,
semantic search over the pgvector ``embedding`` column, and geo search over
``latitude``/``longitude`` (only meaningful for ``place`` contexts).
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

from core.config import settings

from .base import Base


class ContextType(str, Enum):
    """Kinds of tenant content."""

    PLACE = "place"
    WEBSITE = "website"
    TICKET = "ticket"
    DOCUMENT = "document"
    TEXT = "text"


class Context(Base):
    """
    Retrievable tenant content.

    ``intent_scopes``/``intent_actions`` are the structural tags used by the
    structured retrieval path; ``attributes`` is an open map whose known keys
    are exposed through ``schemas.envelopes.ContextAttributes``.
    """

    __tablename__ = "contexts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    type = Column(String(50), nullable=False, default=ContextType.DOCUMENT.value)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=False, default="")
    instruction = Column(Text, nullable=True)
    attributes = Column(JSONB, nullable=False, default=dict, server_default="{}")
    trust_level = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(String(30), nullable=False, default="active", server_default="active")
    language = Column(String(10), nullable=True)
    keywords = Column(ARRAY(String), nullable=False, default=list, server_default="{}")
    intent_scopes = Column(ARRAY(String), nullable=False, default=list, server_default="{}")
    intent_actions = Column(ARRAY(String), nullable=False, default=list, server_default="{}")

    # Geo (place contexts only)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    embedding = Column(Vector(settings.EMBEDDING_DIM), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_contexts_tenant_type", "tenant_id", "type"),
        Index("ix_contexts_tenant_updated", "tenant_id", "updated_at"),
        Index("ix_contexts_intent_scopes", "intent_scopes", postgresql_using="gin"),
        Index("ix_contexts_intent_actions", "intent_actions", postgresql_using="gin"),
    )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self) -> str:
        return f"<Context(id={self.id}, tenant={self.tenant_id}, type={self.type})>"


class Category(Base):
    """Tenant-defined category used by the ``category`` retrieval filter."""

    __tablename__ = "categories"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    parent_id = Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (Index("ix_categories_tenant_slug", "tenant_id", "slug"),)


class ContextCategory(Base):
    """Link table between contexts and categories."""

    __tablename__ = "context_categories"

    tenant_id = Column(String, primary_key=True)
    context_id = Column(UUID(as_uuid=True), ForeignKey("contexts.id", ondelete="CASCADE"), primary_key=True)
    category_id = Column(UUID(as_uuid=True), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True)
