"""
Conversation Engine - Router Orchestrator
=========================================

Turn-level decision maker. For each user message:

    1. Load router memory for the session
    2. Detect intent
    3. Decide the target role (escalate / continue current / switch)
    4. Record the decision in router memory
    5. Escalate to a human, or delegate to the role's conversation skill
    6. Apply tool-call directives and handler escalation signals

Also exposes workflow operations (start / submit field / confirm / cancel),
the entity CRUD dispatcher, and session lifecycle.

Per-session state lives in the router MemoryStore scope. Turns for the same
session are serialised with a per-session asyncio.Lock; distinct sessions
run independently. A lock is dropped once no task holds or awaits it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from conversation_engine import memory_blocks
from conversation_engine.agent_memory import AgentMemoryManager
from conversation_engine.config import EngineSettings
from conversation_engine.errors import EscalationSignal, NotFoundError, user_message_for
from conversation_engine.intent import IntentDetector
from conversation_engine.memory import MemoryStore
from conversation_engine.models import (
    AgentRole,
    ChatMessage,
    DetectedIntent,
    RoutingDecision,
    SkillContext,
    SkillResult,
    TurnResult,
    utc_now_iso,
)
from conversation_engine.roles import RoleRegistry
from conversation_engine.skills.group import SkillGroup
from conversation_engine.skills.workflow import load_workflow
from conversation_engine.tool_calls import (
    EscalateToManager,
    MemoryInsert,
    MemoryReplace,
    MemoryUpdate,
    ToolCall,
    decode_tool_calls,
)

logger = logging.getLogger(__name__)

NO_AGENT = "none"
CONVERSATION_SKILL_ID = "conversation"

HUMAN_HANDOFF_MESSAGE = (
    "I'm connecting you with a human specialist who can help better. "
    "They'll be with you shortly."
)
HANDOFF_PENDING_MESSAGE = (
    "A human specialist has already been notified and will be with you shortly."
)
DEFAULT_ESCALATION_MESSAGE = "This requires human attention. A {role} manager will contact you shortly."

# Signals in a handler's own reply that it wants a human
HANDLER_ESCALATION_KEYWORDS = (
    "escalate",
    "manager",
    "supervisor",
    "need human",
    "complex issue",
    "beyond my",
)

MAX_STORED_MESSAGES = 100


class RouterOrchestrator:
    """Routes turns between specialist roles and drives entity workflows."""

    def __init__(
        self,
        settings: EngineSettings,
        store: MemoryStore,
        agent_memory: AgentMemoryManager,
        roles: RoleRegistry,
        role_groups: Dict[AgentRole, SkillGroup],
        workflow_group: SkillGroup,
        entity_group: SkillGroup,
        intent_detector: Optional[IntentDetector] = None,
    ):
        self.settings = settings
        self.store = store
        self.sessions = store.scoped("router")
        self.workflow_store = store.scoped("workflows")
        self.agent_memory = agent_memory
        self.roles = roles
        self.role_groups = role_groups
        self.workflow_group = workflow_group
        self.entity_group = entity_group
        self.intent_detector = intent_detector or IntentDetector()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # =========================================================================
    # Turn protocol
    # =========================================================================

    async def process_turn(
        self, session_id: str, raw_text: str, user_id: Optional[str] = None
    ) -> TurnResult:
        """Handle one user message for a session."""
        async with self._locked(session_id):
            return await self._process_turn(session_id, raw_text, user_id)

    async def _process_turn(self, session_id: str, raw_text: str, user_id: Optional[str]) -> TurnResult:
        state = self._load_session(session_id)
        if state["handed_off"]:
            logger.info(f"[RouterOrchestrator] Session {session_id} already handed off")
            return TurnResult(
                response_text=HANDOFF_PENDING_MESSAGE,
                routed_to=AgentRole.HUMAN,
                should_handoff=True,
            )

        self.agent_memory.load_memory(AgentRole.ROUTER, session_id)
        intent = self.intent_detector.detect(raw_text)
        decision = self.make_routing_decision(intent, state["current_agent"])
        logger.info(
            f"[RouterOrchestrator] {session_id}: {state['current_agent']} → "
            f"{decision.target_agent.value} ({decision.reasoning})"
        )

        self._record_interaction(session_id, raw_text, decision)
        history = self._message_history(session_id)
        state["current_agent"] = decision.target_agent.value
        self._save_session(session_id, state)
        self._append_message(session_id, "user", raw_text)

        if decision.target_agent == AgentRole.HUMAN:
            text = self._handle_human_escalation(session_id, raw_text, decision.reasoning, state)
            self._append_message(session_id, "agent", text)
            return TurnResult(response_text=text, routed_to=AgentRole.HUMAN, should_handoff=True)

        result = await self._delegate(decision.target_agent, session_id, user_id, raw_text, history)
        self._append_message(session_id, "agent", result.response_text)
        return result.model_copy(update={"should_handoff": decision.should_handoff})

    def make_routing_decision(
        self, intent: DetectedIntent, current_agent: Union[AgentRole, str, None]
    ) -> RoutingDecision:
        """
        Pick the role that owns this turn.

        A low-confidence intent keeps the current role whenever one is active.
        The new target is not compared against the current role here; a
        confident intent for the same role simply reports no handoff.
        """
        current = current_agent.value if isinstance(current_agent, AgentRole) else (current_agent or NO_AGENT)

        if intent.requires_human:
            return RoutingDecision(
                target_agent=AgentRole.HUMAN,
                reasoning=f"Escalation required: {intent.reason}",
                should_handoff=True,
            )

        if current != NO_AGENT and intent.confidence < self.settings.continuity_threshold:
            return RoutingDecision(
                target_agent=AgentRole(current),
                reasoning=f"Continuing with {current} (context continuity)",
                should_handoff=False,
            )

        target = intent.primary_agent
        reasoning = intent.reason
        if target == AgentRole.ROUTER:
            target = self.settings.fallback_role
            reasoning = f"{intent.reason}; defaulting to {target.value}"

        return RoutingDecision(
            target_agent=target,
            reasoning=reasoning,
            should_handoff=current != target.value,
        )

    # =========================================================================
    # Delegation
    # =========================================================================

    async def _delegate(
        self,
        role: AgentRole,
        session_id: str,
        user_id: Optional[str],
        raw_text: str,
        history: List[ChatMessage],
    ) -> TurnResult:
        group = self.role_groups.get(role)
        if group is None or group.get_skill(CONVERSATION_SKILL_ID) is None:
            logger.error(f"[RouterOrchestrator] No conversation handler registered for {role.value}")
            return TurnResult(response_text=user_message_for("configuration"), routed_to=role)

        context = SkillContext(
            session_id=session_id,
            user_id=user_id,
            message_history=history,
            rendered_memory=self.agent_memory.render(role, session_id),
        )
        result = await group.execute(CONVERSATION_SKILL_ID, {"message": raw_text}, context)

        if not result.success:
            error_type = result.metadata.get("error_type")
            logger.error(f"[RouterOrchestrator] {role.value} handler failed ({error_type}): {result.error}")
            return TurnResult(response_text=user_message_for(error_type), routed_to=role)

        data = result.data or {}
        text = data.get("response") or ""
        calls = decode_tool_calls(data.get("tool_calls"))
        for call in calls:
            if not isinstance(call, EscalateToManager):
                self.apply_tool_call(role, session_id, call)

        signal = self.handler_escalation(role, text, calls)
        if signal is not None:
            text = self._handle_handler_escalation(signal, session_id)

        return TurnResult(
            response_text=text,
            routed_to=role,
            structured_follow_up=data.get("structured_follow_up"),
        )

    def apply_tool_call(self, role: AgentRole, session_id: str, call: ToolCall) -> None:
        """
        Apply one memory directive to the role's blocks.

        Read-only and unknown blocks are refused. A write whose result would
        exceed the block limit is truncated to the limit.
        """
        state = self.agent_memory.load_memory(role, session_id)
        block = memory_blocks.find_block(state.blocks, call.label)
        if block is None:
            logger.warning(f"[RouterOrchestrator] {role.value} tool targets unknown block '{call.label}'")
            return
        if block.read_only:
            logger.warning(f"[RouterOrchestrator] {role.value} tool refused on read-only block '{call.label}'")
            return

        if isinstance(call, MemoryInsert):
            result = f"{block.value}\n{call.text}"
        elif isinstance(call, MemoryReplace):
            result = block.value.replace(call.old, call.new, 1)
        else:
            result = call.text

        if len(result) > block.limit:
            logger.warning(
                f"[RouterOrchestrator] Write to '{call.label}' truncated to {block.limit} chars"
            )
            self.agent_memory.update_block(role, session_id, call.label, result[:block.limit])
        elif isinstance(call, MemoryInsert):
            self.agent_memory.append_to_block(role, session_id, call.label, call.text)
        elif isinstance(call, MemoryReplace):
            self.agent_memory.replace_in_block(role, session_id, call.label, call.old, call.new)
        elif isinstance(call, MemoryUpdate):
            self.agent_memory.update_block(role, session_id, call.label, call.text)

    def handler_escalation(
        self, role: AgentRole, text: str, calls: List[ToolCall]
    ) -> Optional[EscalationSignal]:
        """An escalation tool call wins; otherwise the reply text is scanned for keywords."""
        for call in calls:
            if isinstance(call, EscalateToManager):
                return EscalationSignal(role.value, call.reason or text)
        if self.handler_requests_escalation(text):
            return EscalationSignal(role.value, text)
        return None

    @staticmethod
    def handler_requests_escalation(text: str) -> bool:
        lowered = (text or "").lower()
        return any(keyword in lowered for keyword in HANDLER_ESCALATION_KEYWORDS)

    # =========================================================================
    # Escalation
    # =========================================================================

    def _handle_human_escalation(
        self, session_id: str, raw_text: str, reason: str, state: Dict[str, Any]
    ) -> str:
        self.agent_memory.append_to_block(
            AgentRole.ROUTER,
            session_id,
            "interaction_history",
            f"Escalation to human: {reason}\nUser message: {raw_text}",
        )
        self._trim_history_block(session_id)
        state["handed_off"] = True
        state["escalation_reason"] = reason
        self._save_session(session_id, state)
        logger.info(f"[RouterOrchestrator] Session {session_id} handed off to a human: {reason}")
        return HUMAN_HANDOFF_MESSAGE

    def _handle_handler_escalation(self, signal: EscalationSignal, session_id: str) -> str:
        role = AgentRole(signal.role)
        self.agent_memory.update_block(
            AgentRole.ROUTER,
            session_id,
            "current_agent_assignment",
            f"agent: {role.value}\nescalation: true\nreason: {signal.reason}",
        )
        state = self._load_session(session_id)
        state["needs_attention"] = True
        self._save_session(session_id, state)
        logger.info(f"[RouterOrchestrator] {role.value} escalated session {session_id}")

        manifest = self.roles.get_role(role)
        template = (manifest.escalation_message if manifest else None) or DEFAULT_ESCALATION_MESSAGE
        return template.replace("{role}", role.value)

    # =========================================================================
    # Router memory
    # =========================================================================

    def _record_interaction(self, session_id: str, raw_text: str, decision: RoutingDecision) -> None:
        """Rewrite interaction_history (one new line) and current_agent_assignment."""
        timestamp = utc_now_iso()
        preview = raw_text[: self.settings.history_preview_chars]
        entry = f'[{timestamp}] Route: {decision.target_agent.value} | Message: "{preview}..."'

        router = self.agent_memory.load_memory(AgentRole.ROUTER, session_id)
        block = memory_blocks.find_block(router.blocks, "interaction_history")
        if block is not None:
            lines = [line for line in block.value.split("\n") if line]
            lines.append(entry)
            self.agent_memory.update_block(
                AgentRole.ROUTER, session_id, "interaction_history", self._fit_lines(lines, block.limit)
            )

        self.agent_memory.update_block(
            AgentRole.ROUTER,
            session_id,
            "current_agent_assignment",
            f"agent: {decision.target_agent.value}\nassigned_at: {timestamp}\nreason: {decision.reasoning}",
        )

    def _trim_history_block(self, session_id: str) -> None:
        router = self.agent_memory.load_memory(AgentRole.ROUTER, session_id)
        block = memory_blocks.find_block(router.blocks, "interaction_history")
        if block is not None and len(block.value) > block.limit:
            lines = [line for line in block.value.split("\n") if line]
            self.agent_memory.update_block(
                AgentRole.ROUTER, session_id, "interaction_history", self._fit_lines(lines, block.limit)
            )

    @staticmethod
    def _fit_lines(lines: List[str], limit: int) -> str:
        """Drop the oldest lines until the joined text fits `limit`."""
        lines = list(lines)
        while len(lines) > 1 and len("\n".join(lines)) > limit:
            lines.pop(0)
        return "\n".join(lines)[-limit:] if limit > 0 else ""

    # =========================================================================
    # Session state
    # =========================================================================

    def _load_session(self, session_id: str) -> Dict[str, Any]:
        stored = self.sessions.get(f"session:{session_id}")
        state = {
            "current_agent": NO_AGENT,
            "handed_off": False,
            "needs_attention": False,
            "escalation_reason": None,
        }
        if isinstance(stored, dict):
            state.update(stored)
        return state

    def _save_session(self, session_id: str, state: Dict[str, Any]) -> None:
        self.sessions.set(f"session:{session_id}", state, ttl=self.settings.memory_ttl_seconds)

    def _message_history(self, session_id: str) -> List[ChatMessage]:
        stored = self.sessions.get(f"history:{session_id}") or []
        history = []
        for item in stored:
            try:
                history.append(ChatMessage(**item))
            except (TypeError, ValueError) as e:
                logger.warning(f"[RouterOrchestrator] Skipping unreadable history entry: {e}")
        return history

    def _append_message(self, session_id: str, role: str, content: str) -> None:
        key = f"history:{session_id}"
        messages = self.sessions.append(
            key, ChatMessage(role=role, content=content, timestamp=self.sessions.clock()).model_dump()
        )
        if len(messages) > MAX_STORED_MESSAGES:
            self.sessions.set(key, messages[-MAX_STORED_MESSAGES:])

    async def clear_history(self, session_id: str) -> Dict[str, Any]:
        """
        Reset router memory and every role's memory to seeded defaults.

        In-flight workflows are left alone; cancel them first if needed.
        """
        async with self._locked(session_id):
            roles = [manifest.role for manifest in self.roles.list_roles()]
            self.agent_memory.clear_session_memory(session_id, roles)
            self.sessions.delete(f"session:{session_id}")
            self.sessions.delete(f"history:{session_id}")
            logger.info(f"[RouterOrchestrator] Cleared session {session_id} ({len(roles)} roles reset)")
            return {"session_id": session_id, "cleared": True, "roles_reset": [r.value for r in roles]}

    def get_session_state(self, session_id: str) -> Dict[str, Any]:
        state = self._load_session(session_id)
        router = self.agent_memory.load_memory(AgentRole.ROUTER, session_id)
        return {
            "session_id": session_id,
            **state,
            "message_count": len(self._message_history(session_id)),
            "router_memory": [block.model_dump() for block in router.blocks],
        }

    # =========================================================================
    # Workflows
    # =========================================================================

    async def start_workflow(
        self,
        entity_type: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SkillResult:
        skill_id = f"workflow:{entity_type}"
        if self.workflow_group.get_skill(skill_id) is None:
            return self._not_found(f"Workflow for {entity_type}")

        context = self._workflow_context(session_id, user_id)
        async with self._locked(session_id or skill_id):
            return await self.workflow_group.execute(
                skill_id, {"action": "start", "user_id": user_id}, context
            )

    async def submit_workflow_field(self, workflow_id: str, field: Optional[str], value: Any) -> SkillResult:
        payload = {"action": "submit_field", "workflow_id": workflow_id, "field": field, "value": value}
        return await self._run_workflow_action(workflow_id, payload)

    async def confirm_workflow(self, workflow_id: str) -> SkillResult:
        """Complete the workflow, then dispatch its `next_skill` with the same data."""
        async with self._locked(f"workflow:{workflow_id}"):
            state = load_workflow(self.workflow_store, workflow_id)
            if state is None:
                return self._not_found("Workflow")

            context = self._workflow_context(state.session_id, state.user_id)
            result = await self.workflow_group.execute(
                state.skill_id, {"action": "complete", "workflow_id": workflow_id}, context
            )
            if not result.success or not result.next_skill:
                return result

            logger.info(f"[RouterOrchestrator] Workflow {workflow_id} → {result.next_skill}")
            return await self.workflow_group.execute(result.next_skill, dict(result.data or {}), context)

    async def cancel_workflow(self, workflow_id: str) -> SkillResult:
        return await self._run_workflow_action(workflow_id, {"action": "cancel", "workflow_id": workflow_id})

    async def _run_workflow_action(self, workflow_id: str, payload: Dict[str, Any]) -> SkillResult:
        async with self._locked(f"workflow:{workflow_id}"):
            state = load_workflow(self.workflow_store, workflow_id)
            if state is None:
                return self._not_found("Workflow")
            context = self._workflow_context(state.session_id, state.user_id)
            return await self.workflow_group.execute(state.skill_id, payload, context)

    def _workflow_context(self, session_id: Optional[str], user_id: Optional[str]) -> SkillContext:
        return SkillContext(session_id=session_id or "workflows", user_id=user_id, memory=self.workflow_store)

    # =========================================================================
    # Entities
    # =========================================================================

    async def execute_entity_action(
        self,
        entity_type: str,
        payload: Dict[str, Any],
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SkillResult:
        """Run the CRUD dispatcher for `entity_type` (create/read/update/delete/list/search/view)."""
        skill_id = f"crud:{entity_type.lower()}"
        if self.entity_group.get_skill(skill_id) is None:
            return self._not_found(f"Entity type {entity_type}")

        user = user_id or payload.get("user_id")
        context = SkillContext(session_id=session_id or "entities", user_id=user)
        return await self.entity_group.execute(skill_id, {**payload, "user_id": user}, context)

    # =========================================================================
    # Introspection
    # =========================================================================

    def list_skills(self) -> Dict[str, List[Dict[str, Any]]]:
        groups = list(self.role_groups.values()) + [self.workflow_group, self.entity_group]
        return {
            group.domain: [meta.model_dump(mode="json") for meta in group.list_skills()]
            for group in groups
        }

    @staticmethod
    def _not_found(resource: str) -> SkillResult:
        error = NotFoundError(resource)
        return SkillResult(success=False, error=str(error), metadata={"error_type": error.error_type})

    @asynccontextmanager
    async def _locked(self, key: str):
        """Hold the lock for `key`; forget it when the last user leaves."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]
