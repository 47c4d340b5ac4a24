"""Typed view of a resolved instruction profile."""

from typing import Optional

from pydantic import BaseModel, Field

from models.instruction_profile import InstructionProfile
from schemas.envelopes import AnswerStyle, Glossary, RetrievalPolicy, TrustSafety


class ResolvedProfile(BaseModel):
    """The one instruction profile that governs a request.

    ``matched_target_id`` is the id of the profile target rule that selected
    it, or None when the tenant default was used.
    """

    id: str
    tenant_id: str
    name: str
    version: int
    ai_instruction_message: str
    min_trust_level: int = 0
    answer_style: AnswerStyle = Field(default_factory=AnswerStyle)
    retrieval_policy: RetrievalPolicy = Field(default_factory=RetrievalPolicy)
    trust_safety: TrustSafety = Field(default_factory=TrustSafety)
    glossary: Glossary = Field(default_factory=Glossary)
    matched_target_id: Optional[int] = None

    @property
    def is_default(self) -> bool:
        return self.matched_target_id is None

    @classmethod
    def from_model(cls, profile: InstructionProfile, matched_target_id: Optional[int] = None) -> "ResolvedProfile":
        return cls(
            id=str(profile.id),
            tenant_id=profile.tenant_id,
            name=profile.name,
            version=profile.version or 1,
            ai_instruction_message=profile.ai_instruction_message,
            min_trust_level=profile.min_trust_level or 0,
            answer_style=AnswerStyle.from_raw(profile.answer_style),
            retrieval_policy=RetrievalPolicy.from_raw(profile.retrieval_policy),
            trust_safety=TrustSafety.from_raw(profile.trust_safety),
            glossary=Glossary.from_raw(profile.glossary),
            matched_target_id=matched_target_id,
        )
