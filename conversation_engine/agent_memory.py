"""
Conversation Engine - Agent Memory
==================================

Persists each role's memory blocks per session on top of MemoryStore.

Key layout: `agent_memory:{session_id}:{role}` → serialized AgentMemoryState.
The first load for a (role, session) seeds the role's default block set.
"""

import logging
from typing import Iterable, Optional, Union

from conversation_engine import memory_blocks
from conversation_engine.memory import MemoryStore
from conversation_engine.models import AgentMemoryState, AgentRole, MemoryBlock, utc_now_iso
from conversation_engine.roles import RoleRegistry

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_TTL = 7 * 24 * 60 * 60
KEY_PREFIX = "agent_memory"


class AgentMemoryManager:
    """Load, mutate, and reset per-role memory for a session."""

    def __init__(
        self,
        store: MemoryStore,
        roles: RoleRegistry,
        ttl_seconds: Optional[float] = DEFAULT_MEMORY_TTL,
    ):
        self.store = store
        self.roles = roles
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def memory_key(role: Union[AgentRole, str], session_id: str) -> str:
        return f"{KEY_PREFIX}:{session_id}:{AgentRole(role).value}"

    def load_memory(self, role: Union[AgentRole, str], session_id: str) -> AgentMemoryState:
        """Stored state for the role, or a freshly seeded (and saved) default."""
        role = AgentRole(role)
        stored = self.store.get(self.memory_key(role, session_id))
        if isinstance(stored, dict):
            try:
                return AgentMemoryState(**stored)
            except Exception as e:
                logger.error(
                    f"[AgentMemory] Discarding unreadable memory for {role.value}/{session_id}: {e}"
                )
        return self.reset_memory(role, session_id)

    def save_memory(self, state: AgentMemoryState, session_id: str) -> None:
        state.updated_at = utc_now_iso()
        self.store.set(
            self.memory_key(state.agent_role, session_id),
            state.model_dump(mode="json"),
            ttl=self.ttl_seconds,
        )

    def reset_memory(self, role: Union[AgentRole, str], session_id: str) -> AgentMemoryState:
        """Re-seed the role's default blocks for this session."""
        role = AgentRole(role)
        state = AgentMemoryState(agent_role=role, blocks=self.roles.default_blocks(role))
        self.save_memory(state, session_id)
        logger.debug(f"[AgentMemory] Seeded {role.value} memory for session {session_id}")
        return state

    def clear_session_memory(self, session_id: str, roles: Iterable[Union[AgentRole, str]]) -> None:
        for role in roles:
            self.reset_memory(role, session_id)

    # =========================================================================
    # Block mutations
    # =========================================================================

    def update_block(self, role, session_id: str, label: str, new_value: str) -> Optional[MemoryBlock]:
        return self._mutate(
            role, session_id, label,
            lambda blocks: memory_blocks.update_block(blocks, label, new_value),
        )

    def replace_in_block(
        self, role, session_id: str, label: str, old_text: str, new_text: str
    ) -> Optional[MemoryBlock]:
        return self._mutate(
            role, session_id, label,
            lambda blocks: memory_blocks.replace_in_block(blocks, label, old_text, new_text),
        )

    def append_to_block(self, role, session_id: str, label: str, text: str) -> Optional[MemoryBlock]:
        return self._mutate(
            role, session_id, label,
            lambda blocks: memory_blocks.insert_into_block(blocks, label, text),
        )

    def render(self, role, session_id: str) -> str:
        return memory_blocks.render_for_prompt(self.load_memory(role, session_id).blocks)

    def _mutate(self, role, session_id: str, label: str, change) -> Optional[MemoryBlock]:
        """Apply `change` to the block list and save. Unknown labels are a no-op."""
        state = self.load_memory(role, session_id)
        if memory_blocks.find_block(state.blocks, label) is None:
            logger.warning(f"[AgentMemory] Unknown block '{label}' for role {state.agent_role.value}")
            return None
        state.blocks = change(state.blocks)
        self.save_memory(state, session_id)
        return memory_blocks.find_block(state.blocks, label)
