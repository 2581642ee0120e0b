"""
Tests for memory block functions and RoleRegistry
=================================================
"""

import pytest

from conversation_engine.errors import ConfigurationError
from conversation_engine.memory_blocks import (
    find_block,
    insert_into_block,
    render_for_prompt,
    replace_in_block,
    update_block,
)
from conversation_engine.models import AgentRole, MemoryBlock, RoleManifest
from conversation_engine.roles import RoleRegistry


@pytest.fixture
def blocks():
    return [
        MemoryBlock(label="lead_profile", description="Who the lead is", value="company: Acme"),
        MemoryBlock(label="follow_up_state", description="Next steps", value="next: call"),
    ]


class TestBlockMutations:
    """Mutations return new lists and leave the input untouched."""

    def test_find_block(self, blocks):
        assert find_block(blocks, "follow_up_state").value == "next: call"
        assert find_block(blocks, "missing") is None

    def test_update_block(self, blocks):
        updated = update_block(blocks, "lead_profile", "company: Globex")
        assert find_block(updated, "lead_profile").value == "company: Globex"
        assert find_block(updated, "lead_profile").last_updated is not None
        assert find_block(blocks, "lead_profile").value == "company: Acme"

    def test_replace_first_occurrence_only(self):
        blocks = [MemoryBlock(label="notes", value="a a a")]
        updated = replace_in_block(blocks, "notes", "a", "b")
        assert find_block(updated, "notes").value == "b a a"

    def test_replace_missing_substring_keeps_value(self, blocks):
        updated = replace_in_block(blocks, "lead_profile", "Initech", "Globex")
        assert find_block(updated, "lead_profile").value == "company: Acme"

    def test_insert_appends_on_new_line(self, blocks):
        updated = insert_into_block(blocks, "follow_up_state", "then: email")
        assert find_block(updated, "follow_up_state").value == "next: call\nthen: email"

    def test_order_preserved(self, blocks):
        updated = update_block(blocks, "follow_up_state", "x")
        assert [b.label for b in updated] == ["lead_profile", "follow_up_state"]


class TestRenderForPrompt:
    """Tests for prompt rendering."""

    def test_exact_format(self, blocks):
        expected = (
            "[LEAD_PROFILE]\nDescription: Who the lead is\nContent:\ncompany: Acme"
            "\n\n"
            "[FOLLOW_UP_STATE]\nDescription: Next steps\nContent:\nnext: call"
        )
        assert render_for_prompt(blocks) == expected

    def test_render_is_idempotent(self, blocks):
        assert render_for_prompt(blocks) == render_for_prompt(blocks)

    def test_empty(self):
        assert render_for_prompt([]) == ""


class TestRoleRegistry:
    """Tests for loading role manifests from disk."""

    @pytest.fixture
    def registry(self):
        reg = RoleRegistry()
        reg.load()
        return reg

    def test_loads_all_roles(self, registry):
        roles = {m.role for m in registry.list_roles()}
        assert roles == {AgentRole.ROUTER, AgentRole.SUPPORT, AgentRole.SDR, AgentRole.AE, AgentRole.CSM}

    def test_specialists_have_instructions(self, registry):
        for role in (AgentRole.SUPPORT, AgentRole.SDR, AgentRole.AE, AgentRole.CSM):
            manifest = registry.get_role(role)
            assert manifest.instructions.startswith("You are")
            assert manifest.escalation_message

    def test_default_blocks_are_fresh_copies(self, registry):
        first = registry.default_blocks(AgentRole.SUPPORT)
        first[0].value = "changed"
        second = registry.default_blocks(AgentRole.SUPPORT)
        assert second[0].value != "changed"

    def test_require_missing_role(self, tmp_path):
        registry = RoleRegistry(base_dir=str(tmp_path))
        with pytest.raises(ConfigurationError):
            registry.require_role(AgentRole.SUPPORT)

    def test_unknown_role_name(self, registry):
        assert registry.get_role("janitor") is None

    def test_register_role(self, tmp_path):
        registry = RoleRegistry(base_dir=str(tmp_path))
        registry.register_role(RoleManifest(role=AgentRole.SDR, name="Custom SDR"))
        assert registry.require_role("sdr").name == "Custom SDR"

    def test_invalid_manifest_skipped(self, tmp_path):
        role_dir = tmp_path / "roles" / "support"
        role_dir.mkdir(parents=True)
        (role_dir / "manifest.yaml").write_text("role: not-a-role\nname: Broken\n")
        registry = RoleRegistry(base_dir=str(tmp_path))
        assert registry.list_roles() == []
