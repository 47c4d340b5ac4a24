"""Test factories for creating model instances."""

from .context_factory import ContextFactory, PlaceFactory
from .profile_factory import InstructionProfileFactory, ProfileTargetFactory

__all__ = ["ContextFactory", "PlaceFactory", "InstructionProfileFactory", "ProfileTargetFactory"]
