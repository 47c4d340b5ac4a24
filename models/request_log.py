"""
Request log consumed by the dashboard aggregation component.

One row per retrieval request; success rate, zero-hit rate and top intents
are computed from ``answer_status``, ``contexts_used`` and ``intent_scope``.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

from .base import Base


class RagRequestLog(Base):
    """Immutable audit row for a retrieval request."""

    __tablename__ = "rag_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    query = Column(Text, nullable=True)
    answer_status = Column(Boolean, nullable=False, default=False, server_default="false")
    latency_ms = Column(Integer, nullable=True)
    contexts_used = Column(ARRAY(String), nullable=False, default=list, server_default="{}")
    intent_scope = Column(String, nullable=True)
    intent_action = Column(String, nullable=True)
    intent_detail = Column(String, nullable=True)
    intent_strategy = Column(String, nullable=True)
    retrieval_method = Column(String, nullable=True)
    profile_id = Column(String, nullable=True)
    prompt_key = Column(String, nullable=True)
    prompt_params = Column(JSONB, nullable=True)
    request_body = Column(JSONB, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_rag_requests_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<RagRequestLog(tenant={self.tenant_id}, method={self.retrieval_method}, ok={self.answer_status})>"
