"""
Conversation Engine - Workflow Skill
====================================

Multi-step field collection as a finite-state machine:

    start ──► active ──submit_field (valid, more fields)──► active
                 │
                 └─submit_field (valid, last field)──► pending_confirmation
                                                          │
                                           complete ──────┴──► complete  (next_skill → submit)
    cancel from any non-terminal state ──► cancelled

An invalid submission re-prompts the same field; nothing advances and no
collected data changes. State is persisted under `workflow:{id}` in the
MemoryStore bound through the skill context.
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from conversation_engine.errors import ValidationError
from conversation_engine.memory import MemoryStore
from conversation_engine.models import (
    FieldDefinition,
    SkillCategory,
    SkillMetadata,
    SkillResult,
    WorkflowState,
    WorkflowStatus,
)
from conversation_engine.skills.base import BaseSkill
from conversation_engine.skills.formatters import group_in_order, group_title
from conversation_engine.skills.repository import EntityRepository
from conversation_engine.skills.validators import check_field

logger = logging.getLogger(__name__)

WORKFLOW_ACTIONS = ("start", "submit_field", "complete", "cancel")
CONFIRMATION_HEADER = "Please confirm the following information:"
CONFIRMATION_PROMPT = 'Is this correct? Say "yes" to continue or "no" to cancel.'


def workflow_key(workflow_id: str) -> str:
    return f"workflow:{workflow_id}"


def load_workflow(memory: Optional[MemoryStore], workflow_id: str) -> Optional[WorkflowState]:
    """Read a persisted workflow, or None if absent or unreadable."""
    if memory is None or not workflow_id:
        return None
    raw = memory.get(workflow_key(workflow_id))
    if not isinstance(raw, dict):
        return None
    try:
        return WorkflowState(**raw)
    except Exception as e:
        logger.error(f"[Workflow] Unreadable state for {workflow_id}: {e}")
        return None


def progress(index: int, total: int) -> Dict[str, int]:
    """Progress for the field at `index` (1-based `current`, half-up percentage)."""
    current = index + 1
    return {"current": current, "total": total, "percentage": int(current / total * 100 + 0.5)}


class WorkflowSkill(BaseSkill):
    """
    Base class for entity data-entry workflows.

    Subclasses declare `metadata`, `entity_type`, and the ordered `fields`.
    """

    entity_type: str = ""
    fields: List[FieldDefinition] = []

    async def execute(self, input: Dict[str, Any]) -> SkillResult:
        action = input.get("action") or "start"
        if action == "start":
            return self.start(input)
        if action == "submit_field":
            return self.submit_field(input)
        if action == "complete":
            return self.complete(input)
        if action == "cancel":
            return self.cancel(input)
        return self.failure(f"Unknown workflow action: {action}")

    def can_handle(self, input: Dict[str, Any]) -> bool:
        if not isinstance(input, dict):
            return False
        entity = input.get("entity_type")
        if entity is not None and entity != self.entity_type:
            return False
        if input.get("intent") == f"create_{self.entity_type}":
            return True
        return input.get("action") in WORKFLOW_ACTIONS

    @property
    def action_type(self) -> str:
        """Suffix of the submit skill id, `action:submit_{action_type}`."""
        return self.metadata.id.replace("workflow:", "")

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self, input: Dict[str, Any]) -> SkillResult:
        if self.memory is None:
            return self.failure("Memory not initialized", metadata={"error_type": "configuration"})
        if not self.fields:
            return self.failure("No fields defined for workflow")

        state = WorkflowState(
            id=self.generate_workflow_id(),
            entity_type=self.entity_type,
            skill_id=self.metadata.id,
            session_id=self.context.session_id if self.context else None,
            user_id=input.get("user_id") or (self.context.user_id if self.context else None),
        )
        self._save(state)
        logger.info(f"[Workflow:{self.metadata.id}] Started {state.id}")

        first = self.fields[0]
        return SkillResult(
            success=True,
            data={
                "workflow_id": state.id,
                "field": first.name,
                "message": first.prompt_text(),
                "progress": progress(0, len(self.fields)),
            },
        )

    def submit_field(self, input: Dict[str, Any]) -> SkillResult:
        workflow_id = input.get("workflow_id")
        value = input.get("value")
        if not workflow_id or "value" not in input:
            return self.failure("Missing workflow_id or value")

        state = load_workflow(self.memory, workflow_id)
        if state is None:
            return self.failure("Workflow not found", metadata={"error_type": "not_found"})
        if state.status != WorkflowStatus.ACTIVE:
            return self.failure(f"Workflow is {state.status.value}", data={"workflow_id": workflow_id})
        if state.current_field_index >= len(self.fields):
            return self.failure("All fields already submitted")

        current = self.fields[state.current_field_index]
        submitted_name = input.get("field")
        if submitted_name and submitted_name != current.name:
            return self.failure(
                f"Expected a value for {current.name}, got {submitted_name}",
                data={"workflow_id": workflow_id, "retry_message": current.prompt_text()},
            )

        try:
            check_field(current, value)
        except ValidationError as e:
            logger.info(f"[Workflow:{self.metadata.id}] Rejected {e.field} for {workflow_id}")
            return SkillResult(
                success=False,
                error=e.message,
                errors={e.field: e.message},
                data={
                    "workflow_id": workflow_id,
                    "rejected_field": e.field,
                    "retry_message": current.prompt_text(),
                },
            )

        state.collected_data[current.name] = value
        state.current_field_index += 1

        if state.current_field_index >= len(self.fields):
            state.status = WorkflowStatus.PENDING_CONFIRMATION
            self._save(state)
            return SkillResult(
                success=True,
                data={
                    "workflow_id": workflow_id,
                    "status": state.status.value,
                    "message": f"{self.build_confirmation_message(state.collected_data)}\n\n{CONFIRMATION_PROMPT}",
                    "collected_data": dict(state.collected_data),
                },
            )

        self._save(state)
        next_field = self.fields[state.current_field_index]
        return SkillResult(
            success=True,
            data={
                "workflow_id": workflow_id,
                "field": next_field.name,
                "message": next_field.prompt_text(),
                "progress": progress(state.current_field_index, len(self.fields)),
            },
        )

    def complete(self, input: Dict[str, Any]) -> SkillResult:
        workflow_id = input.get("workflow_id")
        if not workflow_id:
            return self.failure("Missing workflow_id")

        state = load_workflow(self.memory, workflow_id)
        if state is None:
            return self.failure("Workflow not found", metadata={"error_type": "not_found"})
        if state.status != WorkflowStatus.PENDING_CONFIRMATION:
            return self.failure(f"Workflow is {state.status.value}, not awaiting confirmation")

        for field in self.fields:
            if field.required and field.name not in state.collected_data:
                return self.failure(f"Missing required field: {field.name}")

        state.status = WorkflowStatus.COMPLETE
        self._save(state)
        logger.info(f"[Workflow:{self.metadata.id}] Completed {workflow_id}")

        return SkillResult(
            success=True,
            data={
                "workflow_id": workflow_id,
                "entity_type": state.entity_type,
                "user_id": state.user_id,
                "collected_data": dict(state.collected_data),
                "status": state.status.value,
            },
            next_skill=f"action:submit_{self.action_type}",
        )

    def cancel(self, input: Dict[str, Any]) -> SkillResult:
        workflow_id = input.get("workflow_id")
        if not workflow_id:
            return self.failure("Missing workflow_id")

        state = load_workflow(self.memory, workflow_id)
        if state is None:
            return self.failure("Workflow not found", metadata={"error_type": "not_found"})
        if state.status.is_terminal:
            return self.failure(f"Workflow already {state.status.value}")

        state.status = WorkflowStatus.CANCELLED
        self._save(state)
        logger.info(f"[Workflow:{self.metadata.id}] Cancelled {workflow_id}")

        return SkillResult(
            success=True,
            data={"workflow_id": workflow_id, "message": "Workflow cancelled"},
            stop_processing=True,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def build_confirmation_message(self, data: Dict[str, Any]) -> str:
        """Collected values as `Label: value`, grouped in group-declaration order."""
        lines = [CONFIRMATION_HEADER]
        for group, group_fields in group_in_order(self.fields).items():
            rows = [f"{f.label}: {data[f.name]}" for f in group_fields if f.name in data]
            if rows:
                lines.append(f"{group_title(group)}:")
                lines.extend(rows)
        return "\n".join(lines)

    @staticmethod
    def generate_workflow_id() -> str:
        return f"wf_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _save(self, state: WorkflowState) -> None:
        self.memory.set(workflow_key(state.id), state.model_dump(mode="json"))


class WorkflowSubmitSkill(BaseSkill):
    """
    Persists a completed workflow's collected data through a repository.

    Dispatched through `next_skill = action:submit_{entity}`.
    """

    entity_type: str = ""
    entity_label: str = "Record"

    def __init__(self, repository: EntityRepository):
        super().__init__()
        self.repository = repository

    def can_handle(self, input: Dict[str, Any]) -> bool:
        return isinstance(input, dict) and input.get("action") == f"submit_{self.entity_type}"

    async def execute(self, input: Dict[str, Any]) -> SkillResult:
        collected = input.get("collected_data")
        if not isinstance(collected, dict) or not collected:
            return self.failure("No collected data to submit")

        user_id = input.get("user_id") or (self.context.user_id if self.context else None)
        result = await self.repository.create({"user_id": user_id, **collected})
        if not result.success:
            return self.failure(f"Failed to create {self.entity_label.lower()}", errors=result.errors)

        return SkillResult(
            success=True,
            data={
                "workflow_id": input.get("workflow_id"),
                "message": f"{self.entity_label} created successfully",
                "record": result.data,
                "collected_data": dict(collected),
            },
        )


def submit_metadata(entity_type: str, entity_label: str) -> SkillMetadata:
    """Standard metadata for an `action:submit_{entity}` skill."""
    return SkillMetadata(
        id=f"action:submit_{entity_type}",
        name=f"Submit {entity_label}",
        description=f"Persist a completed {entity_label.lower()} workflow",
        category=SkillCategory.ACTION,
        tags=[entity_type, "submit"],
    )
