"""
Conversation Engine - Role Registry
===================================

Discovers and loads role manifests from YAML files. Each role declares its
instructions and its default memory block set:

    conversation_engine/
        roles/
            router/manifest.yaml
            support/manifest.yaml
            sdr/manifest.yaml
            ae/manifest.yaml
            csm/manifest.yaml
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from conversation_engine.errors import ConfigurationError
from conversation_engine.models import AgentRole, MemoryBlock, RoleManifest

logger = logging.getLogger(__name__)


class RoleRegistry:
    """Lookup table of role manifests, lazily loaded from disk."""

    def __init__(self, base_dir: Optional[str] = None):
        """
        Args:
            base_dir: Directory containing `roles/`. Defaults to this package's dir.
        """
        self.base_dir = Path(base_dir or os.path.dirname(__file__))
        self.roles_dir = self.base_dir / "roles"

        self._roles: Dict[AgentRole, RoleManifest] = {}
        self._loaded = False

    # =========================================================================
    # Public API
    # =========================================================================

    def load(self) -> None:
        """Load every `roles/<role>/manifest.yaml`."""
        logger.info(f"[RoleRegistry] Loading from {self.roles_dir}")

        if not self.roles_dir.exists():
            logger.warning(f"[RoleRegistry] Roles directory not found: {self.roles_dir}")
        else:
            for role_dir in sorted(self.roles_dir.iterdir()):
                manifest_path = role_dir / "manifest.yaml"
                if role_dir.is_dir() and manifest_path.exists():
                    self._load_role(manifest_path)

        self._loaded = True
        logger.info(f"[RoleRegistry] Loaded {len(self._roles)} roles")

    def get_role(self, role: Union[AgentRole, str]) -> Optional[RoleManifest]:
        self._ensure_loaded()
        try:
            return self._roles.get(AgentRole(role))
        except ValueError:
            return None

    def require_role(self, role: Union[AgentRole, str]) -> RoleManifest:
        """Like get_role, but a missing manifest is a configuration error."""
        manifest = self.get_role(role)
        if manifest is None:
            raise ConfigurationError(f"No manifest registered for role '{role}'")
        return manifest

    def list_roles(self) -> List[RoleManifest]:
        self._ensure_loaded()
        return list(self._roles.values())

    def register_role(self, manifest: RoleManifest) -> None:
        """Programmatically register (or replace) a role manifest."""
        if manifest.role in self._roles:
            logger.warning(f"[RoleRegistry] Overwriting role: {manifest.role.value}")
        self._roles[manifest.role] = manifest
        logger.info(f"[RoleRegistry] Registered role: {manifest.role.value}")

    def default_blocks(self, role: Union[AgentRole, str]) -> List[MemoryBlock]:
        """Fresh copies of the role's seeded memory blocks."""
        manifest = self.require_role(role)
        return [block.model_copy(deep=True) for block in manifest.memory_blocks]

    # =========================================================================
    # Internal Loading
    # =========================================================================

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _load_role(self, manifest_path: Path) -> None:
        try:
            data = self._read_yaml(manifest_path)
            if not data:
                return
            manifest = RoleManifest(**data)
            self._roles[manifest.role] = manifest
            logger.info(
                f"[RoleRegistry]   Role loaded: {manifest.role.value} "
                f"({len(manifest.memory_blocks)} blocks)"
            )
        except Exception as e:
            logger.error(f"[RoleRegistry] Failed to load role from {manifest_path}: {e}")

    @staticmethod
    def _read_yaml(path: Path) -> Optional[dict]:
        try:
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
        except Exception as e:
            logger.error(f"[RoleRegistry] Failed to read YAML {path}: {e}")
            return None
