"""
Skills - pluggable units of turn-handling logic.

    from conversation_engine.skills import BaseSkill, SkillRegistry, SkillGroup
"""

from conversation_engine.skills.base import BaseSkill
from conversation_engine.skills.group import SkillGroup
from conversation_engine.skills.registry import SkillRegistry

__all__ = ["BaseSkill", "SkillGroup", "SkillRegistry"]
