"""
Conversation Engine - Core Models
=================================

Pydantic models that define the schema for skills, workflows, memory blocks,
routing decisions, and turn results. These models are the contract between
all layers of the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Enums
# =============================================================================

class AgentRole(str, Enum):
    """Routing targets. ROUTER means the intent was undetermined."""
    ROUTER = "router"
    SUPPORT = "support"
    SDR = "sdr"
    AE = "ae"
    CSM = "csm"
    HUMAN = "human"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SkillCategory(str, Enum):
    """Kinds of skills a registry can hold."""
    INTENT = "intent"
    WORKFLOW = "workflow"
    CONVERSATION = "conversation"
    ACTION = "action"
    TOOL = "tool"


class WorkflowStatus(str, Enum):
    """Lifecycle of a multi-step workflow."""
    ACTIVE = "active"
    PENDING_CONFIRMATION = "pending_confirmation"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETE, WorkflowStatus.CANCELLED)


class FieldType(str, Enum):
    """Declared entity field types. Drives built-in validation and formatting."""
    TEXT = "text"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"


# =============================================================================
# Memory
# =============================================================================

class MemoryEntry(BaseModel):
    """A stored value with its write time and optional time-to-live (seconds)."""
    key: str
    data: Any = None
    timestamp: float
    ttl: Optional[float] = None


class MemoryStats(BaseModel):
    total_entries: int = 0
    approx_size: int = 0
    oldest_timestamp: Optional[float] = None
    newest_timestamp: Optional[float] = None


class MemoryBlock(BaseModel):
    """
    One labeled facet of a role's working context.

    `limit` is a soft byte cap; callers enforce it, the store does not.
    """
    label: str
    description: str = ""
    value: str = ""
    limit: int = 2000
    read_only: bool = False
    last_updated: Optional[str] = None


class AgentMemoryState(BaseModel):
    """Full block set of one role in one session."""
    agent_role: AgentRole
    blocks: List[MemoryBlock] = Field(default_factory=list)
    updated_at: str = Field(default_factory=utc_now_iso)


# =============================================================================
# Skills
# =============================================================================

class SkillMetadata(BaseModel):
    """Static description of a skill. Registry identity is `id`."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    category: SkillCategory = SkillCategory.ACTION
    tags: List[str] = Field(default_factory=list)
    required_context: List[str] = Field(default_factory=list)


class SkillResult(BaseModel):
    """
    Uniform envelope returned by every skill.

    A non-empty `next_skill` on a successful result asks the caller to
    dispatch the same turn's data to that skill id.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    errors: Optional[Dict[str, str]] = None
    next_skill: Optional[str] = None
    stop_processing: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    role: str
    content: str
    timestamp: Optional[float] = None


class SkillContext(BaseModel):
    """Per-call execution context bound to a skill before `execute`."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str
    user_id: Optional[str] = None
    memory: Any = None  # MemoryStore
    message_history: List[ChatMessage] = Field(default_factory=list)
    shared_data: Dict[str, Any] = Field(default_factory=dict)
    current_domain: Optional[str] = None
    rendered_memory: Optional[str] = None


# =============================================================================
# Workflows & Entities
# =============================================================================

class FieldDefinition(BaseModel):
    """
    One field collected by a workflow. Immutable, declared per entity schema.

    `validator` is optional; without one the field type's built-in check is used.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = True
    validator: Optional[Callable[[Any], bool]] = None
    error_message: Optional[str] = None
    group: str = "basic"
    prompt: Optional[str] = None

    def prompt_text(self) -> str:
        return self.prompt or f"What is the {self.label.lower()}?"


class EntityField(BaseModel):
    """Field declaration used by the generic CRUD dispatcher."""
    model_config = ConfigDict(frozen=True)

    name: str
    label: Optional[str] = None
    type: FieldType = FieldType.TEXT
    required: bool = False
    read_only: bool = False
    description: Optional[str] = None
    group: str = "basic"
    validator: Optional[Callable[[Any], bool]] = None
    options: Optional[List[str]] = None

    @property
    def display_label(self) -> str:
        return self.label or self.name


class EntityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    plural_name: Optional[str] = None
    fields: List[EntityField] = Field(default_factory=list)

    @property
    def plural(self) -> str:
        return self.plural_name or f"{self.name}s"


class WorkflowState(BaseModel):
    """State of one in-flight workflow, persisted under `workflow:{id}`."""
    id: str
    entity_type: str
    skill_id: str
    started_at: str = Field(default_factory=utc_now_iso)
    current_field_index: int = 0
    collected_data: Dict[str, Any] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.ACTIVE
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class CRUDResult(BaseModel):
    """Envelope returned by every repository operation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    errors: Optional[Dict[str, str]] = None
    count: Optional[int] = None


# =============================================================================
# Routing
# =============================================================================

class DetectedIntent(BaseModel):
    primary_agent: AgentRole
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    secondary_agent: Optional[AgentRole] = None
    urgency: Urgency = Urgency.MEDIUM
    requires_human: bool = False
    match_count: int = 0


class RoutingDecision(BaseModel):
    target_agent: AgentRole
    reasoning: str
    should_handoff: bool = False


class TurnResult(BaseModel):
    """What the transport gets back for one user turn."""
    response_text: str
    routed_to: AgentRole
    should_handoff: bool = False
    structured_follow_up: Optional[Dict[str, Any]] = None


class CompletionResponse(BaseModel):
    text: str = ""
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Role manifests
# =============================================================================

class RoleManifest(BaseModel):
    """Declarative definition of a role: instructions plus default memory blocks."""
    role: AgentRole
    name: str
    description: Optional[str] = None
    instructions: str = ""
    escalation_message: Optional[str] = None
    memory_blocks: List[MemoryBlock] = Field(default_factory=list)
