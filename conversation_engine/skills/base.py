"""
Conversation Engine - Base Skill
================================

Abstract base class for all skills. Provides the common lifecycle:
- initialize(context)  → bind session, user, and memory access
- can_handle(input)    → pure predicate used by registry lookup
- execute(input)       → do the work, return a SkillResult envelope
- cleanup(context)     → release anything bound in initialize
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from conversation_engine.errors import ConfigurationError
from conversation_engine.models import SkillContext, SkillMetadata, SkillResult

logger = logging.getLogger(__name__)


class BaseSkill(ABC):
    """
    Base class for skills.

    Subclasses set a class-level `metadata` and implement `execute()` and
    `can_handle()`. Skills return failure envelopes instead of raising past
    their own boundary.
    """

    metadata: SkillMetadata

    def __init__(self):
        self.context: Optional[SkillContext] = None

    async def initialize(self, context: SkillContext) -> None:
        self.context = context

    @abstractmethod
    async def execute(self, input: Dict[str, Any]) -> SkillResult:
        """
        Run the skill.

        Args:
            input: Skill-specific payload.

        Returns:
            SkillResult envelope.
        """
        ...

    @abstractmethod
    def can_handle(self, input: Dict[str, Any]) -> bool:
        """Whether this skill accepts `input`. Must not mutate state."""
        ...

    async def cleanup(self, context: SkillContext) -> None:
        """Override in subclasses if needed."""
        return None

    @property
    def skill_id(self) -> str:
        return self.metadata.id

    # =========================================================================
    # Helpers for subclasses
    # =========================================================================

    @property
    def memory(self):
        """The MemoryStore bound through the context, or None."""
        return self.context.memory if self.context else None

    def get_memory(self, key: Optional[str] = None) -> Any:
        if self.memory is None:
            return None
        return self.memory.get(key or f"skill-memory:{self.metadata.id}")

    def set_memory(self, data: Any, key: Optional[str] = None) -> None:
        if self.memory is None:
            raise ConfigurationError("Memory not available in context")
        self.memory.set(key or f"skill-memory:{self.metadata.id}", data)

    def validate_context(self) -> None:
        """Raise ConfigurationError if the context or any required key is missing."""
        if self.context is None:
            raise ConfigurationError("Skill context not initialized")
        for key in self.metadata.required_context:
            present = getattr(self.context, key, None) is not None or key in self.context.shared_data
            if not present:
                raise ConfigurationError(f"Required context missing: {key}")

    @staticmethod
    def format_error(error: Any) -> str:
        if isinstance(error, Exception) and error.args:
            return str(error.args[0]) if len(error.args) == 1 else str(error)
        return str(error) or error.__class__.__name__

    def failure(self, error: str, **kwargs) -> SkillResult:
        logger.debug(f"[Skill:{self.metadata.id}] Failure: {error}")
        return SkillResult(success=False, error=error, **kwargs)
