"""
Conversation Engine - Contact Skills
====================================

Reference entity wired through every layer:

- ContactWorkflowSkill  (workflow:contact)       → collect first/last name, email, phone
- ContactSubmitSkill    (action:submit_contact)  → persist the collected contact
- ContactCRUDSkill      (crud:contact)           → create/read/update/delete/list/search

Field names follow the contacts table columns (snake_case).
"""

from typing import Any

from conversation_engine.models import (
    EntityConfig,
    EntityField,
    FieldDefinition,
    FieldType,
    SkillCategory,
    SkillMetadata,
)
from conversation_engine.skills.crud import GenericEntityCRUDSkill
from conversation_engine.skills.workflow import WorkflowSkill, WorkflowSubmitSkill, submit_metadata

ENTITY_TYPE = "contact"
MAX_NAME_LENGTH = 100
RELATIONSHIPS = ("friend", "colleague", "client", "prospect", "other")


def is_valid_name(value: Any) -> bool:
    return isinstance(value, str) and 0 < len(value.strip()) <= MAX_NAME_LENGTH


CONTACT_FIELDS = [
    FieldDefinition(
        name="first_name",
        label="First Name",
        validator=is_valid_name,
        error_message="First name is required (100 characters max)",
        group="basic",
        prompt="What is the contact's first name?",
    ),
    FieldDefinition(
        name="last_name",
        label="Last Name",
        validator=is_valid_name,
        error_message="Last name is required (100 characters max)",
        group="basic",
        prompt="What is the contact's last name?",
    ),
    FieldDefinition(
        name="email",
        label="Email",
        type=FieldType.EMAIL,
        error_message="Invalid email address",
        group="contact",
        prompt="What is the contact's email address?",
    ),
    FieldDefinition(
        name="phone",
        label="Phone",
        type=FieldType.PHONE,
        error_message="Phone number must be at least 10 digits",
        group="contact",
        prompt="What is the contact's phone number?",
    ),
]


class ContactWorkflowSkill(WorkflowSkill):
    metadata = SkillMetadata(
        id="workflow:contact",
        name="Create Contact",
        description="Collect a new contact's details step by step",
        category=SkillCategory.WORKFLOW,
        tags=[ENTITY_TYPE, "create", "workflow"],
    )
    entity_type = ENTITY_TYPE
    fields = CONTACT_FIELDS


class ContactSubmitSkill(WorkflowSubmitSkill):
    metadata = submit_metadata(ENTITY_TYPE, "Contact")
    entity_type = ENTITY_TYPE
    entity_label = "Contact"


CONTACT_ENTITY = EntityConfig(
    name="Contact",
    fields=[
        EntityField(name="first_name", label="First Name", required=True, validator=is_valid_name),
        EntityField(name="last_name", label="Last Name", required=True, validator=is_valid_name),
        EntityField(name="email", label="Email", type=FieldType.EMAIL, required=True, group="contact"),
        EntityField(name="phone", label="Phone", type=FieldType.PHONE, required=True, group="contact"),
        EntityField(name="company", label="Company", group="work"),
        EntityField(name="job_title", label="Job Title", group="work"),
        EntityField(name="address", label="Address", type=FieldType.TEXTAREA, group="contact"),
        EntityField(
            name="birthday", label="Birthday", type=FieldType.DATE, group="personal",
            description="YYYY-MM-DD",
        ),
        EntityField(
            name="relationship", label="Relationship", type=FieldType.SELECT, group="personal",
            options=list(RELATIONSHIPS), validator=lambda v: v in RELATIONSHIPS,
        ),
        EntityField(name="notes", label="Notes", type=FieldType.TEXTAREA, group="personal"),
        EntityField(name="created_at", label="Created", type=FieldType.DATE, read_only=True, group="system"),
    ],
)


class ContactCRUDSkill(GenericEntityCRUDSkill):
    metadata = SkillMetadata(
        id="crud:contact",
        name="Contact Records",
        description="Create, view, update, delete, list, and search contacts",
        category=SkillCategory.ACTION,
        tags=[ENTITY_TYPE, "crud"],
    )
    entity = CONTACT_ENTITY

    def format_list_item(self, record):
        name = f"{record.get('first_name') or ''} {record.get('last_name') or ''}".strip()
        email = record.get("email")
        return f"{name} <{email}>" if email else name or str(record.get("id"))
