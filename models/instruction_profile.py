"""
Instruction profiles and the rules (profile targets) that select them.

A profile bundles behavioral configuration for the downstream agent plus the
literal ``ai_instruction_message``. Profile targets map a request shape
(intent scope/action, channel, user segment) to a profile with a priority.
Empty string is the "no value" sentinel on targets so the composite unique
key compares cleanly; the resolver turns it into a wildcard.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from .base import Base


class InstructionProfile(Base):
    """Named, versioned bundle of agent behavior configuration."""

    __tablename__ = "instruction_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    version = Column(Integer, nullable=False, default=1, server_default="1")

    # Open maps, typed through schemas.envelopes
    answer_style = Column(JSONB, nullable=True)
    retrieval_policy = Column(JSONB, nullable=True)
    trust_safety = Column(JSONB, nullable=True)
    glossary = Column(JSONB, nullable=True)

    ai_instruction_message = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    min_trust_level = Column(Integer, nullable=False, default=0, server_default="0")

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

    __table_args__ = (Index("ix_instruction_profiles_tenant_active", "tenant_id", "is_active"),)

    def __repr__(self) -> str:
        return f"<InstructionProfile(name={self.name}, version={self.version}, active={self.is_active})>"


class ProfileTarget(Base):
    """Priority-ordered rule mapping a request shape to a profile."""

    __tablename__ = "profile_targets"

    # Identity gives a stable insertion order for the "most recent rule" tie-break
    id = Column(BigInteger, Identity(), primary_key=True)
    profile_id = Column(UUID(as_uuid=True), nullable=False)
    tenant_id = Column(String, nullable=False, index=True)
    intent_scope = Column(String, nullable=False, default="", server_default="")
    intent_action = Column(String, nullable=False, default="", server_default="")
    channel = Column(String, nullable=False, default="", server_default="")
    user_segment = Column(String, nullable=False, default="", server_default="")
    priority = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "profile_id",
            "tenant_id",
            "intent_scope",
            "intent_action",
            "channel",
            "user_segment",
            name="uq_profile_targets_rule",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ProfileTarget(profile={self.profile_id}, scope={self.intent_scope!r}, "
            f"action={self.intent_action!r}, priority={self.priority})>"
        )
