"""
Conversation Engine - Skill Registry
====================================

Registration and lookup of skill instances by id, capability predicate,
category, and tag.

Lookup by predicate is first-match: skills are scanned in descending
priority, ties in registration order.
"""

import logging
from typing import Any, Dict, List, Optional

from conversation_engine.models import SkillCategory, SkillMetadata
from conversation_engine.skills.base import BaseSkill

logger = logging.getLogger(__name__)


class SkillRegistry:
    """Ordered table of skills."""

    def __init__(self):
        self._skills: Dict[str, BaseSkill] = {}
        self._priorities: Dict[str, int] = {}
        self._sequence: Dict[str, int] = {}
        self._order: List[str] = []
        self._counter = 0

    def register(self, skill: BaseSkill, priority: int = 0) -> None:
        """
        Register a skill.

        Raises:
            ValueError: If the skill has no id.
        """
        metadata = getattr(skill, "metadata", None)
        if metadata is None or not metadata.id:
            raise ValueError("Skill must have an ID")

        skill_id = metadata.id
        if skill_id in self._skills:
            logger.warning(f"[SkillRegistry] Skill {skill_id} already registered, overwriting")
        else:
            self._sequence[skill_id] = self._counter
            self._counter += 1

        self._skills[skill_id] = skill
        self._priorities[skill_id] = priority
        self._order = sorted(
            self._skills, key=lambda sid: (-self._priorities[sid], self._sequence[sid])
        )
        logger.debug(f"[SkillRegistry] Registered skill: {skill_id} (priority {priority})")

    def get_skill(self, skill_id: str) -> Optional[BaseSkill]:
        return self._skills.get(skill_id)

    def find_skill(self, input: Any) -> Optional[BaseSkill]:
        """First skill, in priority order, whose `can_handle(input)` is true."""
        for skill_id in self._order:
            skill = self._skills[skill_id]
            if skill.can_handle(input):
                return skill
        return None

    def list_skills(self) -> List[SkillMetadata]:
        return [self._skills[sid].metadata for sid in self._order]

    def get_skills_by_category(self, category: SkillCategory) -> List[SkillMetadata]:
        return [m for m in self.list_skills() if m.category == category]

    def get_skills_by_tag(self, tag: str) -> List[SkillMetadata]:
        return [m for m in self.list_skills() if tag in m.tags]

    def count(self) -> int:
        return len(self._skills)

    def has(self, skill_id: str) -> bool:
        return skill_id in self._skills

    def get_all_skill_ids(self) -> List[str]:
        return list(self._order)

    def clear(self) -> None:
        self._skills.clear()
        self._priorities.clear()
        self._sequence.clear()
        self._order = []
