"""
Conversation Engine - Tool Call Directives
==========================================

Closed set of directives a role handler may attach to a completion:

- MemoryInsert{label, text}        → append a line to a memory block
- MemoryReplace{label, old, new}   → replace a substring in a block
- MemoryUpdate{label, text}        → rewrite a block
- EscalateToManager{reason?}       → hand the session to a human

Raw calls arrive as `{"name": ..., "arguments": dict | JSON string}`.
Unknown names and malformed arguments are logged and dropped.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class _Directive(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MemoryInsert(_Directive):
    kind: Literal["memory_insert"] = "memory_insert"
    label: str = Field(validation_alias=AliasChoices("label", "blockLabel", "block_label"))
    text: str = Field(validation_alias=AliasChoices("text", "textToInsert", "text_to_insert"))


class MemoryReplace(_Directive):
    kind: Literal["memory_replace"] = "memory_replace"
    label: str = Field(validation_alias=AliasChoices("label", "blockLabel", "block_label"))
    old: str = Field(validation_alias=AliasChoices("old", "oldText", "old_text"))
    new: str = Field(validation_alias=AliasChoices("new", "newText", "new_text"))


class MemoryUpdate(_Directive):
    kind: Literal["memory_update"] = "memory_update"
    label: str = Field(validation_alias=AliasChoices("label", "blockLabel", "block_label"))
    text: str = Field(validation_alias=AliasChoices("text", "newContent", "new_content"))


class EscalateToManager(_Directive):
    kind: Literal["escalate"] = "escalate"
    reason: Optional[str] = None


ToolCall = Union[MemoryInsert, MemoryReplace, MemoryUpdate, EscalateToManager]

_DIRECTIVES = {
    "memoryInsert": MemoryInsert,
    "memory_insert": MemoryInsert,
    "memoryReplace": MemoryReplace,
    "memory_replace": MemoryReplace,
    "memoryUpdate": MemoryUpdate,
    "memory_update": MemoryUpdate,
    "escalateToManager": EscalateToManager,
    "escalate_to_manager": EscalateToManager,
}


def _arguments(raw: Dict[str, Any]) -> Any:
    args = raw.get("arguments", raw.get("args"))
    if args is None:
        return {}
    if isinstance(args, str):
        return json.loads(args) if args.strip() else {}
    return args


def decode_tool_call(raw: Any) -> Optional[ToolCall]:
    """Decode one raw call, or None if it is unknown or malformed."""
    if not isinstance(raw, dict):
        logger.warning(f"[ToolCalls] Ignoring non-object tool call: {raw!r}")
        return None

    name = raw.get("name")
    model = _DIRECTIVES.get(name)
    if model is None:
        logger.info(f"[ToolCalls] Ignoring unknown tool: {name}")
        return None

    try:
        args = _arguments(raw)
        if not isinstance(args, dict):
            raise ValueError("arguments must be an object")
        return model.model_validate(args)
    except (ValueError, pydantic.ValidationError) as e:
        logger.warning(f"[ToolCalls] Malformed {name} call dropped: {e}")
        return None


def decode_tool_calls(raw_calls: Optional[Iterable[Any]]) -> List[ToolCall]:
    decoded = [decode_tool_call(raw) for raw in raw_calls or []]
    return [call for call in decoded if call is not None]
