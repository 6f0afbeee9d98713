"""Shared fixtures."""

from __future__ import annotations

import pytest

from fakes import SECRET, FakeAgent, FakeLinearClient
from linear_agent.config import AgentConfig


@pytest.fixture
def config(tmp_path):
    return AgentConfig(
        webhook_secret=SECRET,
        access_token="lin_api_test",
        repos_base=tmp_path / "repos",
        data_dir=tmp_path / "data",
        debug_dir=tmp_path / "debug",
        project_update_reaction_delay=0,
    )


@pytest.fixture
def linear():
    return FakeLinearClient()


@pytest.fixture
def agent():
    return FakeAgent()
