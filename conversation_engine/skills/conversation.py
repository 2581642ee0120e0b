"""
Conversation Engine - Conversation Skill
========================================

Role handler: turns one user message into a reply from the completion
service, using the role's instructions and rendered memory as the system
prompt. Registered once per specialist role's SkillGroup.
"""

import logging
import re
from typing import Any, Dict, List

from conversation_engine.completion import CompletionClient, complete_with_retry
from conversation_engine.errors import CapacityError, ConfigurationError
from conversation_engine.models import (
    ChatMessage,
    RoleManifest,
    SkillCategory,
    SkillMetadata,
    SkillResult,
)
from conversation_engine.skills.base import BaseSkill

logger = logging.getLogger(__name__)

TOOLS_SECTION = """===== TOOLS YOU CAN CALL =====
You have access to tools to update your memory and perform actions.
Examples:
- memoryReplace(blockLabel, oldText, newText) - Update memory
- memoryInsert(blockLabel, textToInsert) - Add to memory
- updateIssueStatus(status) - For support agent
- updateDealStage(stage) - For AE agent
- updateHealthScore(score) - For CSM agent
- scoreQualified(score, level) - For SDR agent

Use tools to remember important information about this conversation."""

CONTACT_INTENT_PATTERNS = [
    re.compile(r"create.*contact", re.IGNORECASE),
    re.compile(r"add.*contact", re.IGNORECASE),
    re.compile(r"new.*contact", re.IGNORECASE),
    re.compile(r"add to crm", re.IGNORECASE),
]

CONTACT_FOLLOW_UP = {
    "type": "workflow_suggestion",
    "skill_id": "workflow:contact",
    "entity_type": "contact",
    "message": "Would you like me to create a new contact? I'll ask for the name, email, and phone.",
}


def build_system_prompt(instructions: str, rendered_memory: str) -> str:
    return (
        f"{instructions}\n\n"
        f"===== AGENT MEMORY =====\n{rendered_memory}\n\n"
        f"{TOOLS_SECTION}\n\n"
        f"===== CURRENT CONVERSATION ====="
    )


def wants_new_contact(message: str) -> bool:
    return any(pattern.search(message) for pattern in CONTACT_INTENT_PATTERNS)


def recent_history(history: List[ChatMessage], window: int) -> List[ChatMessage]:
    """Last `window` messages, with the "agent" role mapped to "assistant"."""
    recent = history[-window:] if window > 0 else []
    return [
        m.model_copy(update={"role": "assistant"}) if m.role == "agent" else m
        for m in recent
    ]


class ConversationSkill(BaseSkill):
    """
    Reply to a free-text message as one role.

    Input: {"message": str}
    Output data: {"response": str, "tool_calls": [...], "structured_follow_up"?: {...}}
    """

    metadata = SkillMetadata(
        id="conversation",
        name="Conversation",
        description="Handle general conversation through the completion service",
        category=SkillCategory.CONVERSATION,
        tags=["ai", "chat"],
    )

    def __init__(
        self,
        manifest: RoleManifest,
        completion: CompletionClient,
        history_window: int = 10,
        max_retries: int = 2,
        base_delay: float = 0.5,
    ):
        super().__init__()
        self.manifest = manifest
        self.completion = completion
        self.history_window = history_window
        self.max_retries = max_retries
        self.base_delay = base_delay

    def can_handle(self, input: Dict[str, Any]) -> bool:
        return isinstance(input, dict) and isinstance(input.get("message"), str)

    async def execute(self, input: Dict[str, Any]) -> SkillResult:
        message = input.get("message")
        if not isinstance(message, str) or not message:
            return self.failure("Invalid input: message (string) required")

        try:
            self.validate_context()
            system_prompt = build_system_prompt(
                self.manifest.instructions, self.context.rendered_memory or ""
            )
            history = recent_history(self.context.message_history, self.history_window)

            logger.debug(
                f"[ConversationSkill:{self.manifest.role.value}] Completing "
                f"({len(history)} history messages)"
            )
            response = await complete_with_retry(
                self.completion,
                system_prompt,
                history,
                message,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                role=self.manifest.role.value,
            )
        except CapacityError as e:
            logger.error(f"[ConversationSkill:{self.manifest.role.value}] Completion unavailable: {e}")
            return self.failure(self.format_error(e), metadata={"error_type": CapacityError.error_type})
        except ConfigurationError as e:
            logger.error(f"[ConversationSkill:{self.manifest.role.value}] Not configured: {e}")
            return self.failure(self.format_error(e), metadata={"error_type": ConfigurationError.error_type})

        data: Dict[str, Any] = {
            "response": response.text,
            "tool_calls": list(response.tool_calls),
        }
        if wants_new_contact(message):
            data["structured_follow_up"] = dict(CONTACT_FOLLOW_UP)

        return SkillResult(success=True, data=data, metadata={"role": self.manifest.role.value})
