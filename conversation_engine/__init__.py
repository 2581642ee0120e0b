"""
Conversation Engine
===================

Turns free-text user messages into either a routed, memory-aware dialogue
with a specialist role, or a multi-turn structured data-entry workflow that
ends in a record-store write.

Architecture Layers:
    1. Memory          - MemoryStore scopes and per-role memory blocks
    2. Skills          - BaseSkill contract, SkillRegistry, SkillGroup
    3. Workflows       - Field-collection state machine and CRUD dispatcher
    4. Intent          - Keyword intent detection
    5. Orchestrator    - Per-turn routing, continuity, and escalation

Usage:
    from conversation_engine import create_engine

    engine = create_engine()
    result = await engine.process_turn("session-1", "I'm getting an API error")
"""

from conversation_engine.factory import create_engine
from conversation_engine.intent import IntentDetector
from conversation_engine.models import AgentRole, SkillResult, TurnResult
from conversation_engine.orchestrator import RouterOrchestrator

__all__ = [
    "create_engine",
    "IntentDetector",
    "AgentRole",
    "SkillResult",
    "TurnResult",
    "RouterOrchestrator",
]
