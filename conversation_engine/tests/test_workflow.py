"""
Tests for the workflow state machine
====================================

Covers the contact reference workflow end to end: start, field submission
with retry-in-place, confirmation, completion chaining, and cancellation.
"""

import asyncio

import pytest

from conversation_engine.memory import MemoryStore
from conversation_engine.models import SkillContext, WorkflowStatus
from conversation_engine.skills.contact import ContactSubmitSkill, ContactWorkflowSkill
from conversation_engine.skills.group import SkillGroup
from conversation_engine.skills.repository import InMemoryRepository
from conversation_engine.skills.workflow import CONFIRMATION_PROMPT, load_workflow, progress, workflow_key

VALID_CONTACT = [
    ("first_name", "Ada"),
    ("last_name", "Lovelace"),
    ("email", "ada@example.com"),
    ("phone", "555-123-4567"),
]


def run_async(coro):
    """Helper to run async tests without pytest-asyncio."""
    return asyncio.run(coro)


@pytest.fixture
def repository():
    return InMemoryRepository("Contact")


@pytest.fixture
def group(repository):
    group = SkillGroup("workflows")
    group.register(ContactWorkflowSkill())
    group.register(ContactSubmitSkill(repository))
    group.initialize(MemoryStore().scoped("workflows"))
    return group


@pytest.fixture
def context():
    return SkillContext(session_id="s1", user_id="u1")


def call(group, context, payload, skill_id="workflow:contact"):
    return run_async(group.execute(skill_id, payload, context))


def start(group, context):
    result = call(group, context, {"action": "start"})
    assert result.success
    return result.data["workflow_id"]


def submit(group, context, workflow_id, field, value):
    return call(group, context, {
        "action": "submit_field", "workflow_id": workflow_id, "field": field, "value": value,
    })


def state_of(group, workflow_id):
    return load_workflow(group.memory, workflow_id)


class TestWorkflowStart:
    """Tests for starting a workflow."""

    def test_start_prompts_first_field(self, group, context):
        result = call(group, context, {"action": "start"})
        assert result.data["field"] == "first_name"
        assert result.data["message"] == "What is the contact's first name?"
        assert result.data["progress"] == {"current": 1, "total": 4, "percentage": 25}

    def test_start_persists_state(self, group, context):
        workflow_id = start(group, context)
        state = state_of(group, workflow_id)
        assert state.status == WorkflowStatus.ACTIVE
        assert state.current_field_index == 0
        assert state.user_id == "u1"
        assert workflow_id.startswith("wf_")

    def test_start_without_memory_fails(self, context):
        skill = ContactWorkflowSkill()
        run_async(skill.initialize(context))
        result = run_async(skill.execute({"action": "start"}))
        assert result.success is False
        assert result.metadata["error_type"] == "configuration"

    def test_can_handle(self):
        skill = ContactWorkflowSkill()
        assert skill.can_handle({"intent": "create_contact"})
        assert skill.can_handle({"action": "submit_field"})
        assert not skill.can_handle({"action": "submit_field", "entity_type": "account"})
        assert not skill.can_handle({"action": "delete"})


class TestWorkflowHappyPath:
    """Four valid fields, then complete."""

    def test_full_contact_workflow(self, group, context):
        workflow_id = start(group, context)

        for index, (field, value) in enumerate(VALID_CONTACT[:-1]):
            result = submit(group, context, workflow_id, field, value)
            assert result.success
            assert result.data["field"] == VALID_CONTACT[index + 1][0]
            assert result.data["progress"]["current"] == index + 2

        last = submit(group, context, workflow_id, *VALID_CONTACT[-1])
        assert last.success
        assert last.data["status"] == "pending_confirmation"

        done = call(group, context, {"action": "complete", "workflow_id": workflow_id})
        assert done.success
        assert done.next_skill == "action:submit_contact"
        assert done.data["collected_data"] == dict(VALID_CONTACT)
        assert state_of(group, workflow_id).status == WorkflowStatus.COMPLETE

    def test_confirmation_message_is_grouped(self, group, context):
        workflow_id = start(group, context)
        result = None
        for field, value in VALID_CONTACT:
            result = submit(group, context, workflow_id, field, value)

        expected = (
            "Please confirm the following information:\n"
            "Basic:\n"
            "First Name: Ada\n"
            "Last Name: Lovelace\n"
            "Contact:\n"
            "Email: ada@example.com\n"
            "Phone: 555-123-4567\n"
            "\n"
            f"{CONFIRMATION_PROMPT}"
        )
        assert result.data["message"] == expected

    def test_submit_skill_persists_record(self, group, context, repository):
        workflow_id = start(group, context)
        for field, value in VALID_CONTACT:
            submit(group, context, workflow_id, field, value)
        done = call(group, context, {"action": "complete", "workflow_id": workflow_id})

        saved = call(group, context, dict(done.data), skill_id=done.next_skill)
        assert saved.success
        assert saved.data["message"] == "Contact created successfully"
        assert saved.data["record"]["email"] == "ada@example.com"
        assert saved.data["record"]["user_id"] == "u1"

        listed = run_async(repository.find_many("u1"))
        assert listed.count == 1


class TestWorkflowValidation:
    """An invalid email is retried in place."""

    def test_invalid_email_then_valid(self, group, context):
        workflow_id = start(group, context)
        submit(group, context, workflow_id, "first_name", "Ada")
        submit(group, context, workflow_id, "last_name", "Lovelace")
        before = state_of(group, workflow_id)

        rejected = submit(group, context, workflow_id, "email", "not-an-email")
        assert rejected.success is False
        assert rejected.errors == {"email": "Invalid email address"}
        assert rejected.data["rejected_field"] == "email"
        assert rejected.data["retry_message"] == "What is the contact's email address?"

        after = state_of(group, workflow_id)
        assert after.current_field_index == before.current_field_index
        assert after.collected_data == before.collected_data

        accepted = submit(group, context, workflow_id, "email", "ada@example.com")
        assert accepted.success
        assert accepted.data["field"] == "phone"
        assert state_of(group, workflow_id).current_field_index == 3

    def test_short_phone_rejected(self, group, context):
        workflow_id = start(group, context)
        for field, value in VALID_CONTACT[:3]:
            submit(group, context, workflow_id, field, value)
        result = submit(group, context, workflow_id, "phone", "555-1234")
        assert result.errors == {"phone": "Phone number must be at least 10 digits"}

    def test_empty_required_value_rejected(self, group, context):
        workflow_id = start(group, context)
        result = submit(group, context, workflow_id, "first_name", "   ")
        assert result.success is False
        assert "first_name" in result.errors

    def test_wrong_field_name_does_not_advance(self, group, context):
        workflow_id = start(group, context)
        result = submit(group, context, workflow_id, "email", "ada@example.com")
        assert result.success is False
        assert state_of(group, workflow_id).current_field_index == 0

    def test_unknown_workflow(self, group, context):
        result = submit(group, context, "wf_missing", "first_name", "Ada")
        assert result.success is False
        assert result.metadata["error_type"] == "not_found"


class TestWorkflowMonotonicity:
    """Index never decreases; terminal workflows are never re-entered."""

    def test_index_non_decreasing(self, group, context):
        workflow_id = start(group, context)
        indexes = [state_of(group, workflow_id).current_field_index]
        attempts = [
            ("first_name", "Ada"),
            ("last_name", ""),
            ("last_name", "Lovelace"),
            ("email", "nope"),
            ("email", "ada@example.com"),
        ]
        for field, value in attempts:
            submit(group, context, workflow_id, field, value)
            indexes.append(state_of(group, workflow_id).current_field_index)
        assert indexes == sorted(indexes)
        assert indexes[-1] == 3

    def test_cancelled_workflow_rejects_submissions(self, group, context):
        workflow_id = start(group, context)
        submit(group, context, workflow_id, "first_name", "Ada")

        cancelled = call(group, context, {"action": "cancel", "workflow_id": workflow_id})
        assert cancelled.success
        assert cancelled.stop_processing is True

        result = submit(group, context, workflow_id, "last_name", "Lovelace")
        assert result.success is False
        state = state_of(group, workflow_id)
        assert state.status == WorkflowStatus.CANCELLED
        assert state.collected_data == {"first_name": "Ada"}

    def test_completed_workflow_rejects_submissions(self, group, context):
        workflow_id = start(group, context)
        for field, value in VALID_CONTACT:
            submit(group, context, workflow_id, field, value)
        call(group, context, {"action": "complete", "workflow_id": workflow_id})

        result = submit(group, context, workflow_id, "first_name", "Grace")
        assert result.success is False
        assert state_of(group, workflow_id).collected_data["first_name"] == "Ada"

    def test_cancel_terminal_workflow_fails(self, group, context):
        workflow_id = start(group, context)
        call(group, context, {"action": "cancel", "workflow_id": workflow_id})
        again = call(group, context, {"action": "cancel", "workflow_id": workflow_id})
        assert again.success is False
        assert again.error == "Workflow already cancelled"

    def test_complete_requires_pending_confirmation(self, group, context):
        workflow_id = start(group, context)
        submit(group, context, workflow_id, "first_name", "Ada")
        result = call(group, context, {"action": "complete", "workflow_id": workflow_id})
        assert result.success is False
        assert state_of(group, workflow_id).status == WorkflowStatus.ACTIVE

    def test_complete_rechecks_required_fields(self, group, context):
        workflow_id = start(group, context)
        state = state_of(group, workflow_id)
        state.status = WorkflowStatus.PENDING_CONFIRMATION
        state.current_field_index = 4
        state.collected_data = {"first_name": "Ada", "last_name": "Lovelace", "phone": "555-123-4567"}
        group.memory.set(workflow_key(workflow_id), state.model_dump(mode="json"))

        result = call(group, context, {"action": "complete", "workflow_id": workflow_id})
        assert result.success is False
        assert result.error == "Missing required field: email"
        assert result.next_skill is None
        after = state_of(group, workflow_id)
        assert after.status == WorkflowStatus.PENDING_CONFIRMATION
        assert "email" not in after.collected_data


class TestProgress:
    def test_progress_rounds_half_up(self):
        assert progress(0, 3) == {"current": 1, "total": 3, "percentage": 33}
        assert progress(1, 3) == {"current": 2, "total": 3, "percentage": 67}
        assert progress(0, 8) == {"current": 1, "total": 8, "percentage": 13}
