"""
Conversation Engine - Factory
=============================

Builds a fully wired RouterOrchestrator. Nothing here is a module-level
singleton: every call returns a fresh engine with its own memory.
"""

import logging
from typing import Dict, Optional

from conversation_engine.agent_memory import AgentMemoryManager
from conversation_engine.completion import (
    CompletionClient,
    MockCompletionClient,
    ServingEndpointCompletionClient,
)
from conversation_engine.config import EngineSettings, load_settings
from conversation_engine.memory import MemoryStore
from conversation_engine.models import AgentRole
from conversation_engine.orchestrator import RouterOrchestrator
from conversation_engine.roles import RoleRegistry
from conversation_engine.skills.contact import (
    ContactCRUDSkill,
    ContactSubmitSkill,
    ContactWorkflowSkill,
)
from conversation_engine.skills.conversation import ConversationSkill
from conversation_engine.skills.group import SkillGroup
from conversation_engine.skills.repository import EntityRepository, InMemoryRepository

logger = logging.getLogger(__name__)

SPECIALIST_ROLES = (AgentRole.SUPPORT, AgentRole.SDR, AgentRole.AE, AgentRole.CSM)


def create_completion_client(settings: EngineSettings) -> CompletionClient:
    if settings.mock_mode:
        logger.info("[Factory] Mock mode: using MockCompletionClient")
        return MockCompletionClient()
    return ServingEndpointCompletionClient(
        endpoint_name=settings.serving_endpoint,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )


def create_engine(
    settings: Optional[EngineSettings] = None,
    completion: Optional[CompletionClient] = None,
    repositories: Optional[Dict[str, EntityRepository]] = None,
    store: Optional[MemoryStore] = None,
    roles: Optional[RoleRegistry] = None,
) -> RouterOrchestrator:
    """
    Wire settings, memory, roles, skill groups, and the orchestrator.

    Args:
        settings: Defaults to `load_settings()`.
        completion: Defaults to the mock or serving-endpoint client per settings.
        repositories: Entity type → repository. Missing types get an InMemoryRepository.
        store: Shared MemoryStore. Defaults to a fresh in-process store.
        roles: Role manifests. Defaults to the packaged `roles/` directory.
    """
    settings = settings or load_settings()
    completion = completion or create_completion_client(settings)
    store = store or MemoryStore()
    roles = roles or RoleRegistry()
    repositories = dict(repositories or {})
    contacts = repositories.setdefault("contact", InMemoryRepository("Contact"))

    agent_memory = AgentMemoryManager(store, roles, ttl_seconds=settings.memory_ttl_seconds)
    domain_store = store.scoped("domains")

    role_groups: Dict[AgentRole, SkillGroup] = {}
    for role in SPECIALIST_ROLES:
        manifest = roles.require_role(role)
        group = SkillGroup(role.value, description=manifest.description)
        group.register(
            ConversationSkill(
                manifest,
                completion,
                history_window=settings.message_history_window,
                max_retries=settings.completion_max_retries,
                base_delay=settings.completion_base_delay,
            )
        )
        group.initialize(domain_store)
        role_groups[role] = group

    workflow_group = SkillGroup("workflows", description="Multi-step entity data entry")
    workflow_group.register(ContactWorkflowSkill(), priority=10)
    workflow_group.register(ContactSubmitSkill(contacts))
    workflow_group.initialize(store.scoped("workflows"))

    entity_group = SkillGroup("entities", description="Entity record operations")
    entity_group.register(ContactCRUDSkill(contacts, page_size=settings.default_page_size))
    entity_group.initialize(domain_store)

    logger.info(
        f"[Factory] Engine ready: {len(role_groups)} roles, "
        f"{workflow_group.registry.count()} workflow skills, {entity_group.registry.count()} entity skills"
    )
    return RouterOrchestrator(
        settings=settings,
        store=store,
        agent_memory=agent_memory,
        roles=roles,
        role_groups=role_groups,
        workflow_group=workflow_group,
        entity_group=entity_group,
    )
