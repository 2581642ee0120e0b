"""
Conversation Engine - Generic Entity CRUD Skill
===============================================

One dispatcher for create / read / update / delete / list / search / view on
any entity type, driven by an EntityConfig field schema and an
EntityRepository.

Input shape:
    {
        "action": "create" | "read" | "update" | "delete" | "list" | "search" | "view",
        "user_id": "...",
        "entity_id": "...",                 # read / view / update / delete
        "field_name": "...", "field_value": ...,   # update, or one create step
        "workflow_state": {...},            # create progress, delete confirmation
        "confirm_delete": true,             # second delete call
        "query": "...", "page": 1, "limit": 20,
    }
"""

import logging
from typing import Any, Dict, List, Optional

from conversation_engine.models import EntityConfig, EntityField, SkillResult
from conversation_engine.skills import responses
from conversation_engine.skills.base import BaseSkill
from conversation_engine.skills.formatters import format_entity_detailed, format_field_value
from conversation_engine.skills.repository import EntityRepository, is_searchable
from conversation_engine.skills.validators import TYPE_ERROR_MESSAGES, is_empty, validate_value

logger = logging.getLogger(__name__)

CRUD_ACTIONS = ("create", "read", "update", "delete", "list", "search", "view")


class GenericEntityCRUDSkill(BaseSkill):
    """Entity operation dispatcher. Subclasses declare `metadata` and `entity`."""

    entity: EntityConfig

    def __init__(self, repository: EntityRepository, page_size: int = 20):
        super().__init__()
        self.repository = repository
        self.page_size = page_size

    def can_handle(self, input: Dict[str, Any]) -> bool:
        if not isinstance(input, dict):
            return False
        entity_type = input.get("entity_type")
        if entity_type is not None and entity_type.lower() != self.entity.name.lower():
            return False
        return input.get("action") in CRUD_ACTIONS

    async def execute(self, input: Dict[str, Any]) -> SkillResult:
        action = input.get("action")
        if not action:
            return responses.error("Missing action parameter")

        handler = {
            "create": self.handle_create,
            "read": self.handle_read,
            "view": self.handle_read,
            "update": self.handle_update,
            "delete": self.handle_delete,
            "list": self.handle_list,
            "search": self.handle_search,
        }.get(action)
        if handler is None:
            return responses.error(f"Unknown action: {action}")

        try:
            return await handler(input)
        except Exception as e:
            logger.error(f"[CRUD:{self.entity.name}] {action} failed: {e}")
            return responses.error(f"Failed to {action} {self.entity.name}", str(e))

    # =========================================================================
    # Handlers
    # =========================================================================

    async def handle_create(self, input: Dict[str, Any]) -> SkillResult:
        """Collect required fields one at a time; create once none are missing."""
        state = dict(input.get("workflow_state") or {})
        field_name = input.get("field_name")

        if field_name:
            field = self.get_field(field_name)
            value = input.get("field_value")
            if field is None or not self.validate_field(field_name, value):
                message = self.field_error_message(field_name)
                return responses.validation_error(message, {field_name: message})
            state[field_name] = value

        required = [f for f in self.entity.fields if f.required]
        missing = next((f for f in required if is_empty(state.get(f.name))), None)

        if missing is None:
            result = await self.repository.create(self.build_create_data(state, input.get("user_id")))
            if not result.success:
                return responses.error(f"Failed to create {self.entity.name}", result.error, errors=result.errors)
            logger.info(f"[CRUD:{self.entity.name}] Created record")
            return responses.success(
                f"{self.entity.name} created successfully", result.data, "create_success", "view"
            )

        collected = sum(1 for f in required if not is_empty(state.get(f.name)))
        return responses.workflow_step(
            f"Please provide {self.field_prompt(missing)}",
            step=collected + 1,
            total_steps=len(required),
            current_field=missing.name,
            field_type=missing.type.value,
            field_description=missing.description or "",
            collected_data=state,
        )

    async def handle_read(self, input: Dict[str, Any]) -> SkillResult:
        entity_id = input.get("entity_id")
        if not entity_id:
            return responses.error("Missing entity_id")

        result = await self.repository.read(entity_id, input.get("user_id"))
        if not result.success or result.data is None:
            return responses.not_found(self.entity.name, entity_id)

        return responses.success(
            f"{self.entity.name} details:",
            {"record": result.data, "formatted": self.format_detailed(result.data)},
        )

    async def handle_update(self, input: Dict[str, Any]) -> SkillResult:
        entity_id = input.get("entity_id")
        if not entity_id:
            return responses.error("Missing entity_id")

        field_name = input.get("field_name")
        if not field_name or "field_value" not in input:
            return responses.error("Missing field_name or field_value")

        field = self.get_field(field_name)
        if field is not None and field.read_only:
            return responses.error(f"{field.display_label} cannot be changed")

        value = input.get("field_value")
        if not self.validate_field(field_name, value):
            message = f"Invalid value for {field_name}"
            return responses.validation_error(message, {field_name: self.field_error_message(field_name)})

        result = await self.repository.update(entity_id, input.get("user_id"), {field_name: value})
        if not result.success:
            return responses.error(f"Failed to update {self.entity.name}", result.error)

        return responses.success(f"{self.entity.name} updated successfully", result.data, "update_success")

    async def handle_delete(self, input: Dict[str, Any]) -> SkillResult:
        """Two-phase: the first call only confirms; `confirm_delete` executes."""
        entity_id = input.get("entity_id")
        if not entity_id:
            return responses.error("Missing entity_id")

        state = input.get("workflow_state") or {}
        confirmed = bool(input.get("confirm_delete") or state.get("confirm_delete"))
        user_id = input.get("user_id")

        if not confirmed:
            existing = await self.repository.read(entity_id, user_id)
            if not existing.success or existing.data is None:
                return responses.not_found(self.entity.name, entity_id)
            return responses.confirmation(
                f"Are you sure you want to delete this {self.entity.name.lower()}?",
                "delete",
                self.entity.name,
                self.format_for_confirmation(existing.data),
            )

        result = await self.repository.delete(entity_id, user_id)
        if not result.success:
            return responses.error(f"Failed to delete {self.entity.name}", result.error)

        logger.info(f"[CRUD:{self.entity.name}] Deleted {entity_id}")
        return responses.success(f"{self.entity.name} deleted successfully", None, "delete_success")

    async def handle_list(self, input: Dict[str, Any]) -> SkillResult:
        page, limit = self._paging(input)
        result = await self.repository.find_many(input.get("user_id"), page, limit)
        if not result.success:
            return responses.error(f"Failed to list {self.entity.plural}", result.error)

        records = result.data or []
        return responses.page(
            f"Found {len(records)} {self.entity.plural}",
            self.format_list(records),
            page=page,
            page_size=limit,
            total=result.count,
        )

    async def handle_search(self, input: Dict[str, Any]) -> SkillResult:
        """Search when a query is given and the repository can search; else list."""
        query = input.get("query")
        if not query or not is_searchable(self.repository):
            if query:
                logger.info(f"[CRUD:{self.entity.name}] Repository has no search, listing instead")
            return await self.handle_list(input)

        page, limit = self._paging(input)
        result = await self.repository.search(input.get("user_id"), query, page, limit)
        if not result.success:
            return responses.error("Search failed", result.error)

        records = result.data or []
        total = result.count if result.count is not None else len(records)
        return responses.page(
            f'Found {total} result(s) for "{query}"',
            self.format_list(records),
            page=page,
            page_size=limit,
            total=total,
            query=query,
        )

    # =========================================================================
    # Field helpers
    # =========================================================================

    def get_field(self, name: str) -> Optional[EntityField]:
        return next((f for f in self.entity.fields if f.name == name), None)

    def validate_field(self, field_name: str, value: Any) -> bool:
        """Unknown fields are invalid; otherwise the type-dispatch policy applies."""
        field = self.get_field(field_name)
        if field is None:
            return False
        return validate_value(field.type, value, required=field.required, custom=field.validator)

    def field_error_message(self, field_name: str) -> str:
        field = self.get_field(field_name)
        if field is None:
            return f"Unknown field: {field_name}"
        return TYPE_ERROR_MESSAGES.get(field.type) or f"Invalid value for {field.display_label}"

    def field_prompt(self, field: EntityField) -> str:
        if field.description:
            return f"{field.display_label} ({field.description})"
        return field.display_label

    def build_create_data(self, state: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
        """Only declared fields, plus the caller's user id."""
        data: Dict[str, Any] = {"user_id": user_id}
        for field in self.entity.fields:
            if field.name in state:
                data[field.name] = state[field.name]
        return data

    # =========================================================================
    # Formatting
    # =========================================================================

    def format_for_confirmation(self, record: Dict[str, Any]) -> Dict[str, str]:
        """Summary of the first three declared fields."""
        return {
            f.display_label: format_field_value(record.get(f.name), f.type)
            for f in self.entity.fields[:3]
        }

    def format_detailed(self, record: Dict[str, Any]) -> str:
        return format_entity_detailed(record, self.entity.fields, self.entity.name)

    def format_list_item(self, record: Dict[str, Any]) -> str:
        main = self.entity.fields[0] if self.entity.fields else None
        return str(record.get(main.name)) if main else str(record.get("id"))

    def format_list(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {"id": r.get("id"), "display": self.format_list_item(r), "record": r}
            for r in records
        ]

    def _paging(self, input: Dict[str, Any]):
        return int(input.get("page") or 1), int(input.get("limit") or self.page_size)
