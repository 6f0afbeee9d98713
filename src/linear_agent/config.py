"""Configuration loading for the Linear agent.

Settings come from an optional YAML file and are then overridden by
environment variables, so a deployment can run on env vars alone.
Pydantic models validate the resulting schema.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "LINEAR_AGENT_CONFIG"

# Env var → (section, field). Section None means top-level AgentConfig.
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "LINEAR_WEBHOOK_SECRET": (None, "webhook_secret"),
    "LINEAR_ACCESS_TOKEN": (None, "access_token"),
    "LINEAR_API_URL": (None, "api_url"),
    "REPOS_BASE": (None, "repos_base"),
    "LINEAR_AGENT_ENV": (None, "environment"),
    "LINEAR_AGENT_DATA_DIR": (None, "data_dir"),
    "LINEAR_AGENT_DEBUG_DIR": (None, "debug_dir"),
    "LINEAR_AGENT_MODEL": ("agent", "model"),
}


class AgentRuntimeConfig(BaseModel):
    """Options handed to the Claude Agent SDK for every run."""

    model: str | None = None
    permission_mode: Literal["default", "acceptEdits", "plan", "bypassPermissions"] = (
        "bypassPermissions"
    )
    max_turns: int | None = None


class AgentConfig(BaseModel):
    # Secrets
    webhook_secret: str = ""
    access_token: str = ""

    # Linear API
    api_url: str = "https://api.linear.app/graphql"
    request_timeout: float = 10.0  # seconds, per tracker call

    # Identity
    agent_name: str = "Claude"
    mention_token: str = "claude"  # matched as "@claude", case-insensitive

    # Filesystem
    repos_base: Path = Field(default_factory=lambda: Path.home() / "repos")
    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "data")
    debug_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    environment: Literal["development", "production"] = "development"

    # Loop prevention
    dedup_ttl_seconds: float = 3600.0
    dedup_capacity: int = 1000

    # Output shaping
    response_max_chars: int = 2000
    project_update_reaction_delay: float = 2.5  # Linear clears reactions added sooner

    agent: AgentRuntimeConfig = Field(default_factory=AgentRuntimeConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def session_map_path(self) -> Path:
        return self.data_dir / "session-map.json"

    @property
    def scratch_dir(self) -> Path:
        return self.repos_base / "_scratch"


def load_config(config_path: Path | None = None) -> AgentConfig:
    """Load agent configuration.

    Args:
        config_path: Optional YAML file. When omitted, ``LINEAR_AGENT_CONFIG``
            is consulted; if neither is set, defaults plus env vars are used.

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing.
        pydantic.ValidationError: If the merged settings fail validation.
    """
    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV])

    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Agent config not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    for env_name, (section, field) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            raw[field] = value
        else:
            raw.setdefault(section, {})[field] = value

    config = AgentConfig(**raw)

    if not config.webhook_secret:
        logger.warning("LINEAR_WEBHOOK_SECRET is not set, every webhook will be rejected")
    if not config.access_token:
        logger.warning("LINEAR_ACCESS_TOKEN is not set, Linear API calls will fail")

    logger.info(
        "Loaded agent config (environment=%s, repos_base=%s)",
        config.environment,
        config.repos_base,
    )
    return config
