"""
Tests for SkillRegistry and SkillGroup
======================================

Verifies first-match lookup, priority ordering, and context binding during
group execution.
"""

import asyncio

import pytest

from conversation_engine.errors import ConfigurationError
from conversation_engine.memory import MemoryStore
from conversation_engine.models import SkillCategory, SkillContext, SkillMetadata, SkillResult
from conversation_engine.skills import BaseSkill, SkillGroup, SkillRegistry


def run_async(coro):
    """Helper to run async tests without pytest-asyncio."""
    return asyncio.run(coro)


class EchoSkill(BaseSkill):
    """Accepts inputs with a matching `kind`; echoes the bound session id."""

    def __init__(self, skill_id: str, kind: str = "echo", category=SkillCategory.ACTION, tags=None):
        super().__init__()
        self.metadata = SkillMetadata(id=skill_id, name=skill_id, category=category, tags=tags or [])
        self.kind = kind

    def can_handle(self, input):
        return input.get("kind") == self.kind

    async def execute(self, input):
        return SkillResult(
            success=True,
            data={
                "skill": self.metadata.id,
                "session": self.context.session_id,
                "domain": self.context.current_domain,
            },
        )


class ExplodingSkill(EchoSkill):
    async def execute(self, input):
        raise ConfigurationError("repository unavailable")


class CleanupTrackingSkill(ExplodingSkill):
    def __init__(self, skill_id):
        super().__init__(skill_id, kind="tracked")
        self.cleaned = []

    async def cleanup(self, context):
        self.cleaned.append(context.session_id)


class NoIdSkill(BaseSkill):
    metadata = None

    def can_handle(self, input):
        return True

    async def execute(self, input):
        return SkillResult(success=True)


class TestSkillRegistry:
    """Tests for registration and lookup."""

    def test_first_match_in_registration_order(self):
        registry = SkillRegistry()
        registry.register(EchoSkill("a"))
        registry.register(EchoSkill("b"))
        assert registry.find_skill({"kind": "echo"}).skill_id == "a"

    def test_priority_wins_over_registration_order(self):
        registry = SkillRegistry()
        registry.register(EchoSkill("low"))
        registry.register(EchoSkill("high"), priority=5)
        assert registry.find_skill({"kind": "echo"}).skill_id == "high"
        assert registry.get_all_skill_ids() == ["high", "low"]

    def test_no_match(self):
        registry = SkillRegistry()
        registry.register(EchoSkill("a"))
        assert registry.find_skill({"kind": "other"}) is None

    def test_register_without_id_raises(self):
        with pytest.raises(ValueError):
            SkillRegistry().register(NoIdSkill())

    def test_overwrite_keeps_position(self, caplog):
        registry = SkillRegistry()
        registry.register(EchoSkill("a", kind="x"))
        registry.register(EchoSkill("b", kind="x"))
        registry.register(EchoSkill("a", kind="y"))
        assert registry.count() == 2
        assert registry.get_all_skill_ids() == ["a", "b"]
        assert registry.find_skill({"kind": "x"}).skill_id == "b"
        assert "overwriting" in caplog.text

    def test_filters(self):
        registry = SkillRegistry()
        registry.register(EchoSkill("wf", category=SkillCategory.WORKFLOW, tags=["contact"]))
        registry.register(EchoSkill("chat", category=SkillCategory.CONVERSATION, tags=["ai"]))
        assert [m.id for m in registry.get_skills_by_category(SkillCategory.WORKFLOW)] == ["wf"]
        assert [m.id for m in registry.get_skills_by_tag("ai")] == ["chat"]
        assert registry.has("wf") and not registry.has("nope")

    def test_clear(self):
        registry = SkillRegistry()
        registry.register(EchoSkill("a"))
        registry.clear()
        assert registry.count() == 0
        assert registry.find_skill({"kind": "echo"}) is None


class TestSkillGroup:
    """Tests for domain-scoped execution."""

    @pytest.fixture
    def group(self):
        group = SkillGroup("support")
        group.register(EchoSkill("echo"))
        group.register(ExplodingSkill("boom", kind="boom"))
        group.initialize(MemoryStore())
        return group

    def test_initialize_seeds_domain_memory(self, group):
        seeded = group.memory.get_domain_memory("support")
        assert seeded["domain"] == "support"
        assert seeded["skill_count"] == 2

    def test_execute_binds_domain(self, group):
        result = run_async(group.execute("echo", {"kind": "echo"}, SkillContext(session_id="s1")))
        assert result.success
        assert result.data == {"skill": "echo", "session": "s1", "domain": "support"}

    def test_registered_instance_never_bound(self, group):
        run_async(group.execute("echo", {"kind": "echo"}, SkillContext(session_id="s1")))
        assert group.get_skill("echo").context is None

    def test_concurrent_sessions_keep_own_context(self, group):
        async def both():
            return await asyncio.gather(
                group.execute("echo", {}, SkillContext(session_id="s1")),
                group.execute("echo", {}, SkillContext(session_id="s2")),
            )

        first, second = run_async(both())
        assert first.data["session"] == "s1"
        assert second.data["session"] == "s2"

    def test_exception_becomes_failure(self, group):
        result = run_async(group.execute("boom", {}, SkillContext(session_id="s1")))
        assert result.success is False
        assert result.error == "repository unavailable"
        assert result.metadata["error_type"] == "configuration"

    def test_cleanup_runs_when_execute_raises(self, group):
        tracked = CleanupTrackingSkill("tracked")
        group.register(tracked)
        result = run_async(group.execute("tracked", {}, SkillContext(session_id="s1")))
        assert result.success is False
        assert tracked.cleaned == ["s1"]

    def test_missing_skill(self, group):
        result = run_async(group.execute("ghost", {}, SkillContext(session_id="s1")))
        assert result.success is False
        assert result.error == "Skill ghost not found in support domain"

    def test_dispatch_first_match(self, group):
        result = run_async(group.dispatch({"kind": "echo"}, SkillContext(session_id="s1")))
        assert result.data["skill"] == "echo"

    def test_domain_memory_prefix(self, group):
        group.store_in_memory("last_topic", "billing")
        assert group.memory.get("support:last_topic") == "billing"
        assert group.get_from_memory("last_topic") == "billing"

    def test_stats(self, group):
        stats = group.get_stats()
        assert stats["domain"] == "support"
        assert stats["skill_count"] == 2
        assert stats["memory"]["total_entries"] >= 1


class TestBaseSkillHelpers:
    """Tests for BaseSkill helpers."""

    def test_set_memory_without_context_raises(self):
        with pytest.raises(ConfigurationError):
            EchoSkill("a").set_memory({"x": 1})

    def test_memory_round_trip_with_context(self):
        skill = EchoSkill("a")
        run_async(skill.initialize(SkillContext(session_id="s1", memory=MemoryStore())))
        skill.set_memory({"runs": 1})
        assert skill.get_memory() == {"runs": 1}

    def test_validate_context_required_keys(self):
        skill = EchoSkill("a")
        skill.metadata = SkillMetadata(id="a", name="a", required_context=["user_id"])
        run_async(skill.initialize(SkillContext(session_id="s1")))
        with pytest.raises(ConfigurationError):
            skill.validate_context()

    def test_format_error(self):
        assert BaseSkill.format_error(ValueError("bad value")) == "bad value"
        assert BaseSkill.format_error("plain") == "plain"
