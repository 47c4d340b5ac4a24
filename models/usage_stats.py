"""Usage counters written by the stats recorder and read by reporting only."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from .base import Base


class ContextUsageStats(Base):
    """How often each context was used to answer a request."""

    __tablename__ = "context_usage_stats"

    tenant_id = Column(String, primary_key=True)
    context_id = Column(UUID(as_uuid=True), primary_key=True)
    used_count = Column(BigInteger, nullable=False, default=0, server_default="0")
    last_used_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ContextUsageStats(context={self.context_id}, used={self.used_count})>"


class SummaryStats(Base):
    """Per-tenant answered/unanswered outcome counters."""

    __tablename__ = "summary_stats"

    tenant_id = Column(String, primary_key=True)
    answered_count = Column(BigInteger, nullable=False, default=0, server_default="0")
    unanswered_count = Column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SummaryStats(tenant={self.tenant_id}, answered={self.answered_count})>"
