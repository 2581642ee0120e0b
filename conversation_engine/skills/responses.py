"""
Conversation Engine - Response Builders
=======================================

Uniform SkillResult envelopes for entity skills. Every envelope carries a
human-readable `message` in `data` and a machine-readable `code` in metadata.
"""

from typing import Any, Dict, List, Optional

from conversation_engine.models import SkillResult


def success(message: str, data: Any = None, code: Optional[str] = None, next_step: Optional[str] = None) -> SkillResult:
    payload: Dict[str, Any] = {"message": message}
    if data is not None:
        payload["result"] = data
    if next_step:
        payload["next_step"] = next_step
    return SkillResult(success=True, data=payload, metadata={"code": code} if code else {})


def error(message: str, detail: Optional[str] = None, code: Optional[str] = None, errors: Optional[Dict[str, str]] = None) -> SkillResult:
    return SkillResult(
        success=False,
        error=detail or message,
        errors=errors,
        data={"message": message},
        metadata={"code": code} if code else {},
    )


def not_found(entity: str, entity_id: Optional[str] = None) -> SkillResult:
    message = f"{entity} with ID {entity_id} not found" if entity_id else f"{entity} not found"
    return error(message, code="not_found")


def validation_error(message: str, field_errors: Dict[str, str]) -> SkillResult:
    return error(
        message,
        detail=f"Validation failed: {'; '.join(field_errors.values())}",
        code="validation_error",
        errors=field_errors,
    )


def workflow_step(
    message: str,
    step: int,
    total_steps: int,
    current_field: str,
    field_type: str,
    field_description: str = "",
    collected_data: Optional[Dict[str, Any]] = None,
) -> SkillResult:
    return SkillResult(
        success=True,
        data={
            "message": message,
            "step": step,
            "total_steps": total_steps,
            "current_field": current_field,
            "field_type": field_type,
            "field_description": field_description,
            "collected_data": dict(collected_data or {}),
        },
        metadata={"code": "workflow_step"},
    )


def confirmation(message: str, action: str, entity: str, details: Dict[str, Any]) -> SkillResult:
    return SkillResult(
        success=True,
        data={
            "message": message,
            "action": action,
            "entity": entity,
            "details": details,
            "requires_confirmation": True,
        },
        metadata={"code": "confirmation"},
    )


def page(message: str, items: List[Any], page: int = 1, page_size: int = 20, total: Optional[int] = None, query: Optional[str] = None) -> SkillResult:
    actual_total = total if total is not None else len(items)
    data: Dict[str, Any] = {
        "message": message,
        "items": items,
        "count": len(items),
        "total": actual_total,
        "page": page,
        "page_size": page_size,
        "has_more": page * page_size < actual_total,
    }
    if query is not None:
        data["query"] = query
    return SkillResult(success=True, data=data, metadata={"code": "search" if query is not None else "list"})
