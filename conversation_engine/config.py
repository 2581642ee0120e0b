"""
Conversation Engine - Configuration
===================================

Loads engine settings from `engine.yaml` (or the file named by
ENGINE_CONFIG_PATH) and applies environment overrides.

Environment:
    ENGINE_CONFIG_PATH  → alternate settings file
    APP_MOCK_MODE       → "true" to use the mock completion client
    SERVING_ENDPOINT    → model serving endpoint name
    LOG_LEVEL           → logging level (default INFO)
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

from conversation_engine.models import AgentRole

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "engine.yaml"

# YAML section -> {yaml key: settings field}
_SECTION_KEYS: Dict[str, Dict[str, str]] = {
    "routing": {
        "fallback_role": "fallback_role",
        "continuity_threshold": "continuity_threshold",
        "history_preview_chars": "history_preview_chars",
    },
    "completion": {
        "serving_endpoint": "serving_endpoint",
        "temperature": "temperature",
        "max_tokens": "max_tokens",
        "max_retries": "completion_max_retries",
        "base_delay": "completion_base_delay",
        "message_history_window": "message_history_window",
    },
    "memory": {
        "ttl_seconds": "memory_ttl_seconds",
    },
    "entities": {
        "default_page_size": "default_page_size",
    },
}


class EngineSettings(BaseModel):
    """Runtime settings for the orchestrator, completion client, and memory."""
    fallback_role: AgentRole = AgentRole.SUPPORT
    continuity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    history_preview_chars: int = 50
    message_history_window: int = 10
    completion_max_retries: int = 2
    completion_base_delay: float = 0.5
    memory_ttl_seconds: int = 7 * 24 * 60 * 60
    default_page_size: int = 20
    serving_endpoint: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 1024
    mock_mode: bool = False


def _flatten(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the sectioned YAML layout onto flat settings fields."""
    flat: Dict[str, Any] = {}
    for section, keys in _SECTION_KEYS.items():
        values = data.get(section) or {}
        for yaml_key, field_name in keys.items():
            if yaml_key in values and values[yaml_key] not in (None, ""):
                flat[field_name] = values[yaml_key]
    if "mock_mode" in data:
        flat["mock_mode"] = data["mock_mode"]
    return flat


def load_settings(path: Optional[str] = None) -> EngineSettings:
    """
    Load settings from YAML, then apply environment overrides.

    Args:
        path: Settings file. Defaults to ENGINE_CONFIG_PATH or the packaged engine.yaml.

    Returns:
        EngineSettings with defaults for anything the file omits.
    """
    config_path = Path(path or os.getenv("ENGINE_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"[Config] Loaded settings from {config_path}")
    else:
        logger.warning(f"[Config] No settings file at {config_path}, using defaults")

    values = _flatten(data)

    mock_env = os.getenv("APP_MOCK_MODE")
    if mock_env is not None:
        values["mock_mode"] = mock_env.lower() == "true"

    endpoint_env = os.getenv("SERVING_ENDPOINT")
    if endpoint_env:
        values["serving_endpoint"] = endpoint_env

    return EngineSettings(**values)


def configure_logging() -> None:
    """Configure root logging from LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
