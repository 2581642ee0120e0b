"""
Conversation Engine - Completion Service
========================================

Text-completion capability used by role handlers: prompt in, text out, with
optional tool-call directives attached.

Implementations:
- ServingEndpointCompletionClient → Databricks model serving endpoint
- MockCompletionClient            → deterministic replies for APP_MOCK_MODE

`complete_with_retry` retries capacity failures with exponential backoff.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from conversation_engine.errors import CapacityError, ConfigurationError
from conversation_engine.models import ChatMessage, CompletionResponse

logger = logging.getLogger(__name__)

# SDK exception class names that indicate a transient capacity problem
_CAPACITY_ERROR_NAMES = {
    "TooManyRequests",
    "TemporarilyUnavailable",
    "ResourceExhausted",
    "DeadlineExceeded",
}
_CAPACITY_MARKERS = ("429", "503", "rate limit", "capacity", "temporarily unavailable", "overloaded")


class CompletionClient(ABC):
    """Opaque completion capability."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        message_history: List[ChatMessage],
        user_message: str,
        role: Optional[str] = None,
    ) -> CompletionResponse:
        """
        Generate a reply. `role` is the id of the answering role, if known.

        Raises:
            CapacityError: Transient failure; the caller may retry.
            ConfigurationError: The service is not usable in this environment.
        """
        ...


def is_capacity_error(error: Exception) -> bool:
    if isinstance(error, CapacityError):
        return True
    if type(error).__name__ in _CAPACITY_ERROR_NAMES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _CAPACITY_MARKERS)


# =============================================================================
# Databricks model serving
# =============================================================================

class ServingEndpointCompletionClient(CompletionClient):
    """Calls a Databricks model serving endpoint through the workspace SDK."""

    def __init__(
        self,
        endpoint_name: Optional[str],
        temperature: float = 0.3,
        max_tokens: int = 1024,
        workspace_client: Any = None,
    ):
        self.endpoint_name = endpoint_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._workspace_client = workspace_client

    def _get_workspace_client(self):
        """Lazy-load the Databricks WorkspaceClient."""
        if self._workspace_client is None:
            try:
                from databricks.sdk import WorkspaceClient
            except ImportError as e:
                raise ConfigurationError("databricks-sdk is not installed") from e
            self._workspace_client = WorkspaceClient()
        return self._workspace_client

    async def complete(
        self,
        system_prompt: str,
        message_history: List[ChatMessage],
        user_message: str,
        role: Optional[str] = None,
    ) -> CompletionResponse:
        if not self.endpoint_name:
            raise ConfigurationError("No serving endpoint configured (set SERVING_ENDPOINT)")

        ws = self._get_workspace_client()
        messages = self._build_messages(system_prompt, message_history, user_message)

        logger.info(f"[Completion] Calling endpoint: {self.endpoint_name} ({len(messages)} messages)")
        try:
            response = await asyncio.to_thread(
                ws.serving_endpoints.query,
                name=self.endpoint_name,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            if is_capacity_error(e):
                raise CapacityError(str(e)) from e
            raise

        return self._parse_response(response)

    @staticmethod
    def _build_messages(system_prompt: str, history: List[ChatMessage], user_message: str) -> list:
        from databricks.sdk.service.serving import ChatMessage as ServingMessage, ChatMessageRole

        def to_role(role: str) -> ChatMessageRole:
            return ChatMessageRole.ASSISTANT if role in ("assistant", "agent") else ChatMessageRole.USER

        messages = [ServingMessage(role=ChatMessageRole.SYSTEM, content=system_prompt)]
        messages.extend(ServingMessage(role=to_role(m.role), content=m.content) for m in history)
        messages.append(ServingMessage(role=ChatMessageRole.USER, content=user_message))
        return messages

    @staticmethod
    def _parse_response(response: Any) -> CompletionResponse:
        """Extract text and tool calls from a chat-completions style response."""
        if isinstance(response, dict):
            choices = response.get("choices") or []
            message = choices[0].get("message", {}) if choices else {}
            text = message.get("content") or ""
            raw_calls = message.get("tool_calls") or []
        else:
            choices = getattr(response, "choices", None) or []
            message = getattr(choices[0], "message", None) if choices else None
            text = (getattr(message, "content", None) or "") if message else str(response)
            raw_calls = (getattr(message, "tool_calls", None) or []) if message else []

        tool_calls: List[Dict[str, Any]] = []
        for call in raw_calls:
            function = call.get("function") if isinstance(call, dict) else getattr(call, "function", None)
            if function is None:
                continue
            if isinstance(function, dict):
                name, arguments = function.get("name"), function.get("arguments")
            else:
                name, arguments = getattr(function, "name", None), getattr(function, "arguments", None)
            tool_calls.append({"name": name, "arguments": arguments})

        return CompletionResponse(text=text, tool_calls=tool_calls)


# =============================================================================
# Mock
# =============================================================================

class MockCompletionClient(CompletionClient):
    """Deterministic replies naming the answering role id. No tool calls."""

    async def complete(
        self,
        system_prompt: str,
        message_history: List[ChatMessage],
        user_message: str,
        role: Optional[str] = None,
    ) -> CompletionResponse:
        return CompletionResponse(text=f"I'm a {role or 'general'} agent. I'll help you with this issue.")


# =============================================================================
# Retry
# =============================================================================

async def complete_with_retry(
    client: CompletionClient,
    system_prompt: str,
    message_history: List[ChatMessage],
    user_message: str,
    max_retries: int = 2,
    base_delay: float = 0.5,
    role: Optional[str] = None,
) -> CompletionResponse:
    """
    Call the client, retrying only CapacityError.

    Sleeps `base_delay * 2 ** attempt` between attempts (0.5s, 1s with the
    defaults) and re-raises the last CapacityError once retries run out.
    """
    for attempt in range(max_retries + 1):
        try:
            return await client.complete(system_prompt, message_history, user_message, role=role)
        except CapacityError as e:
            if attempt >= max_retries:
                logger.error(f"[Completion] Capacity error after {attempt + 1} attempts: {e}")
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"[Completion] Capacity error (attempt {attempt + 1}/{max_retries + 1}), "
                f"retrying in {delay}s"
            )
            await asyncio.sleep(delay)
    raise CapacityError("Completion retries exhausted")
