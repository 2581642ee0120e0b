"""
Tests for GenericEntityCRUDSkill, validators, and formatters
============================================================
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from conversation_engine.models import CRUDResult, FieldType, SkillContext
from conversation_engine.skills.contact import ContactCRUDSkill
from conversation_engine.skills.formatters import format_currency, format_date, format_phone
from conversation_engine.skills.repository import EntityRepository, InMemoryRepository, is_searchable
from conversation_engine.skills.validators import (
    is_number,
    is_valid_currency,
    is_valid_date,
    is_valid_email,
    is_valid_phone,
    is_valid_url,
    validate_value,
)

CONTACT = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "555-123-4567",
}


def run_async(coro):
    """Helper to run async tests without pytest-asyncio."""
    return asyncio.run(coro)


class ListOnlyRepository(EntityRepository):
    """Repository without a `search` capability."""

    def __init__(self):
        self.inner = InMemoryRepository("Contact")

    async def create(self, data):
        return await self.inner.create(data)

    async def read(self, entity_id, owner_id, include_relations=False):
        return await self.inner.read(entity_id, owner_id)

    async def find_many(self, owner_id, page=1, limit=20):
        return await self.inner.find_many(owner_id, page, limit)

    async def update(self, entity_id, owner_id, data):
        return await self.inner.update(entity_id, owner_id, data)

    async def delete(self, entity_id, owner_id):
        return await self.inner.delete(entity_id, owner_id)


@pytest.fixture
def repository():
    return InMemoryRepository("Contact")


@pytest.fixture
def skill(repository):
    skill = ContactCRUDSkill(repository)
    run_async(skill.initialize(SkillContext(session_id="s1", user_id="u1")))
    return skill


def execute(skill, **payload):
    payload.setdefault("user_id", "u1")
    return run_async(skill.execute(payload))


def seed(repository, **overrides):
    result = run_async(repository.create({"user_id": "u1", **CONTACT, **overrides}))
    return result.data["id"]


class TestCanHandle:
    def test_accepts_crud_actions(self, skill):
        for action in ("create", "read", "update", "delete", "list", "search", "view"):
            assert skill.can_handle({"action": action})

    def test_rejects_other_actions_and_entities(self, skill):
        assert not skill.can_handle({"action": "start"})
        assert not skill.can_handle({"action": "read", "entity_type": "account"})
        assert skill.can_handle({"action": "read", "entity_type": "CONTACT"})


class TestCreate:
    """Progressive field collection."""

    def test_prompts_first_missing_field(self, skill):
        result = execute(skill, action="create")
        assert result.success
        assert result.data["current_field"] == "first_name"
        assert result.data["step"] == 1
        assert result.data["total_steps"] == 4

    def test_collects_then_creates(self, skill, repository):
        state = {}
        result = None
        for field, value in CONTACT.items():
            result = execute(skill, action="create", field_name=field, field_value=value, workflow_state=state)
            if result.metadata.get("code") == "workflow_step":
                state = result.data["collected_data"]

        assert result.metadata["code"] == "create_success"
        record = result.data["result"]
        assert record["user_id"] == "u1"
        assert record["email"] == "ada@example.com"
        assert run_async(repository.find_many("u1")).count == 1

    def test_invalid_field_value(self, skill):
        result = execute(skill, action="create", field_name="email", field_value="bad")
        assert result.success is False
        assert result.errors == {"email": "Invalid email format"}

    def test_undeclared_fields_dropped(self, skill):
        data = skill.build_create_data({**CONTACT, "is_admin": True}, "u1")
        assert "is_admin" not in data
        assert data["user_id"] == "u1"


class TestReadUpdate:
    def test_read_formats_detail(self, skill, repository):
        entity_id = seed(repository, company="Analytical Engines")
        result = execute(skill, action="view", entity_id=entity_id)
        assert result.success
        formatted = result.data["result"]["formatted"]
        assert formatted.startswith("**Contact**")
        assert "### Basic" in formatted
        assert "Company: Analytical Engines" in formatted
        assert formatted.index("### Basic") < formatted.index("### Contact") < formatted.index("### Work")

    def test_read_not_found(self, skill):
        result = execute(skill, action="read", entity_id="missing")
        assert result.success is False
        assert result.data["message"] == "Contact with ID missing not found"
        assert result.metadata["code"] == "not_found"

    def test_read_other_owner_not_found(self, skill, repository):
        entity_id = seed(repository)
        result = execute(skill, action="read", entity_id=entity_id, user_id="someone-else")
        assert result.success is False

    def test_update_single_field(self, skill, repository):
        entity_id = seed(repository)
        result = execute(skill, action="update", entity_id=entity_id, field_name="phone", field_value="(555) 987-6543")
        assert result.success
        stored = run_async(repository.read(entity_id, "u1")).data
        assert stored["phone"] == "(555) 987-6543"
        assert stored["email"] == CONTACT["email"]

    def test_update_rejects_invalid(self, skill, repository):
        entity_id = seed(repository)
        result = execute(skill, action="update", entity_id=entity_id, field_name="birthday", field_value="2024-13-45")
        assert result.success is False
        assert result.errors == {"birthday": "Invalid date format (use YYYY-MM-DD)"}

    def test_update_read_only_field(self, skill, repository):
        entity_id = seed(repository)
        result = execute(skill, action="update", entity_id=entity_id, field_name="created_at", field_value="2020-01-01")
        assert result.success is False
        assert "cannot be changed" in result.error

    def test_update_select_uses_custom_validator(self, skill, repository):
        entity_id = seed(repository)
        assert execute(skill, action="update", entity_id=entity_id, field_name="relationship", field_value="client").success
        assert not execute(skill, action="update", entity_id=entity_id, field_name="relationship", field_value="enemy").success


class TestDelete:
    """Delete asks for confirmation before removing anything."""

    def test_first_call_only_confirms(self, skill):
        repo = AsyncMock(spec=EntityRepository)
        repo.read.return_value = CRUDResult(success=True, data={"id": "c1", **CONTACT})
        repo.delete.return_value = CRUDResult(success=True)
        skill.repository = repo

        result = execute(skill, action="delete", entity_id="c1")
        assert result.success
        assert result.data["requires_confirmation"] is True
        assert result.data["details"] == {"First Name": "Ada", "Last Name": "Lovelace", "Email": "ada@example.com"}
        repo.delete.assert_not_called()

        confirmed = execute(skill, action="delete", entity_id="c1", confirm_delete=True)
        assert confirmed.success
        assert confirmed.metadata["code"] == "delete_success"
        repo.delete.assert_awaited_once_with("c1", "u1")

    def test_confirmation_via_workflow_state(self, skill, repository):
        entity_id = seed(repository)
        execute(skill, action="delete", entity_id=entity_id, workflow_state={"confirm_delete": True})
        assert run_async(repository.read(entity_id, "u1")).success is False

    def test_delete_missing_record(self, skill):
        result = execute(skill, action="delete", entity_id="missing")
        assert result.success is False


class TestListSearch:
    def test_list_paginates_newest_first(self, skill, repository):
        for i in range(3):
            seed(repository, first_name=f"Person{i}")
        result = execute(skill, action="list", limit=2)
        assert result.data["count"] == 2
        assert result.data["total"] == 3
        assert result.data["has_more"] is True
        assert result.data["items"][0]["record"]["first_name"] == "Person2"

    def test_search_matches_substring(self, skill, repository):
        seed(repository, first_name="Grace", last_name="Hopper", email="grace@navy.mil")
        seed(repository)
        result = execute(skill, action="search", query="hopper")
        assert result.data["total"] == 1
        assert result.data["items"][0]["display"] == "Grace Hopper <grace@navy.mil>"
        assert result.data["query"] == "hopper"

    def test_search_falls_back_to_list(self, repository):
        list_only = ListOnlyRepository()
        assert not is_searchable(list_only)
        assert is_searchable(repository)

        skill = ContactCRUDSkill(list_only)
        run_async(list_only.create({"user_id": "u1", **CONTACT}))
        result = execute(skill, action="search", query="nobody")
        assert result.success
        assert result.metadata["code"] == "list"
        assert result.data["total"] == 1

    def test_unknown_action(self, skill):
        result = execute(skill, action="archive")
        assert result.success is False

    def test_repository_exception_wrapped(self, skill):
        repo = AsyncMock(spec=EntityRepository)
        repo.find_many.side_effect = RuntimeError("connection reset")
        skill.repository = repo
        result = execute(skill, action="list")
        assert result.success is False
        assert result.data["message"] == "Failed to list Contact"
        assert result.error == "connection reset"


class TestValidators:
    """Field-type validation policy."""

    def test_email(self):
        assert is_valid_email("a@b.co")
        assert not is_valid_email("not-an-email")
        assert not is_valid_email("a b@c.com")

    def test_url(self):
        assert is_valid_url("https://example.com/path")
        assert not is_valid_url("example.com")

    def test_phone(self):
        assert is_valid_phone("+1 (555) 123-4567")
        assert not is_valid_phone("555-1234")
        assert not is_valid_phone("555-123-456x")

    def test_number(self):
        assert is_number(3) and is_number("4.5")
        assert not is_number(float("nan"))
        assert not is_number("abc")
        assert not is_number(True)

    def test_currency(self):
        assert is_valid_currency("1999.99")
        assert not is_valid_currency(-1)
        assert not is_valid_currency(1_000_000_000)

    def test_date(self):
        assert is_valid_date("2024-02-29")
        assert not is_valid_date("2023-02-29")
        assert not is_valid_date("02/01/2024")

    def test_required_empty_always_fails(self):
        assert not validate_value(FieldType.TEXT, "", required=True)
        assert not validate_value(FieldType.EMAIL, None, required=True)

    def test_custom_validator_only_for_untyped_fields(self):
        assert validate_value(FieldType.TEXT, "x", custom=lambda v: v == "x")
        assert not validate_value(FieldType.TEXT, "y", custom=lambda v: v == "x")
        assert validate_value(FieldType.EMAIL, "a@b.co", custom=lambda v: False)

    def test_untyped_without_validator_passes(self):
        assert validate_value(FieldType.TEXTAREA, "anything")


class TestFormatters:
    def test_currency(self):
        assert format_currency(1234) == "$1,234.00"

    def test_date(self):
        assert format_date("2025-01-05") == "Jan 5, 2025"
        assert format_date("2025-01-05", "iso") == "2025-01-05"
        assert format_date(None) == "-"

    def test_phone(self):
        assert format_phone("5551234567") == "(555) 123-4567"
