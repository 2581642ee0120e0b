"""
Conversation Engine - Skill Group
=================================

Domain-scoped container binding a SkillRegistry to a MemoryStore namespace.
Execution enhances the caller's context with the domain name and converts
any exception raised by a skill into a failure envelope.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from conversation_engine.errors import ConfigurationError
from conversation_engine.memory import MemoryStore
from conversation_engine.models import SkillContext, SkillMetadata, SkillResult, utc_now_iso
from conversation_engine.skills.base import BaseSkill
from conversation_engine.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)


class SkillGroup:
    """Skills for one domain plus that domain's memory."""

    def __init__(self, domain: str, description: Optional[str] = None):
        self.domain = domain
        self.description = description
        self.registry = SkillRegistry()
        self.memory: Optional[MemoryStore] = None

    def register(self, skill: BaseSkill, priority: int = 0) -> None:
        self.registry.register(skill, priority=priority)

    def initialize(self, memory: MemoryStore) -> None:
        """Bind the domain's memory and seed `domain-memory:{domain}`."""
        self.memory = memory
        memory.initialize_domain(
            self.domain,
            {
                "domain": self.domain,
                "created_at": utc_now_iso(),
                "skill_count": self.registry.count(),
            },
        )
        logger.info(f"[SkillGroup:{self.domain}] Initialized with {self.registry.count()} skills")

    def find_skill(self, input: Any) -> Optional[BaseSkill]:
        return self.registry.find_skill(input)

    def get_skill(self, skill_id: str) -> Optional[BaseSkill]:
        return self.registry.get_skill(skill_id)

    async def execute(self, skill_id: str, input: Dict[str, Any], context: SkillContext) -> SkillResult:
        """
        Run one skill against `input`.

        The registered instance is never bound to a context; each call works on
        a shallow copy so concurrent sessions never share `skill.context`.
        """
        registered = self.get_skill(skill_id)
        if registered is None:
            return SkillResult(
                success=False,
                error=f"Skill {skill_id} not found in {self.domain} domain",
            )

        enhanced = context.model_copy(
            update={
                "current_domain": self.domain,
                "memory": context.memory if context.memory is not None else self.memory,
            }
        )
        skill = copy.copy(registered)

        try:
            await skill.initialize(enhanced)
            try:
                return await skill.execute(input)
            finally:
                await skill.cleanup(enhanced)
        except Exception as e:
            logger.error(f"[SkillGroup:{self.domain}] Error executing skill {skill_id}: {e}")
            return SkillResult(
                success=False,
                error=BaseSkill.format_error(e) or "Skill execution failed",
                metadata={"error_type": getattr(e, "error_type", "unexpected")},
            )

    async def dispatch(self, input: Dict[str, Any], context: SkillContext) -> SkillResult:
        """Find the first skill that accepts `input` and execute it."""
        skill = self.find_skill(input)
        if skill is None:
            return SkillResult(
                success=False,
                error=f"No skill in {self.domain} domain can handle this request",
            )
        return await self.execute(skill.skill_id, input, context)

    def list_skills(self) -> List[SkillMetadata]:
        return self.registry.list_skills()

    # =========================================================================
    # Domain memory
    # =========================================================================

    def store_in_memory(self, key: str, data: Any) -> None:
        if self.memory is None:
            raise ConfigurationError("Memory not initialized")
        self.memory.set(f"{self.domain}:{key}", data)

    def get_from_memory(self, key: str) -> Any:
        if self.memory is None:
            return None
        return self.memory.get(f"{self.domain}:{key}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "skill_count": self.registry.count(),
            "memory": self.memory.get_stats().model_dump() if self.memory else None,
        }
