"""Tests for controller dispatch: idempotency, loop safety, stop handling."""

from __future__ import annotations

import asyncio
import json

import pytest

from fakes import (
    AGENT_ID,
    FakeAgent,
    FakeLinearClient,
    project_update_payload,
    session_created_payload,
    session_prompted_payload,
    stop_payload,
    thread_comment_payload,
)
from linear_agent.agent import AssistantText, ConversationStarted
from linear_agent.controller import STOP_ACKNOWLEDGEMENT, AgentController
from linear_agent.errors import MalformedPayloadError
from linear_agent.models import ActivityType, WebhookPayload
from linear_agent.runner import STOPPED_RESPONSE


def P(raw: dict) -> WebhookPayload:
    return WebhookPayload.model_validate(raw)


class SlowResponseLinear(FakeLinearClient):
    """Holds the final response until the test releases it."""

    def __init__(self):
        super().__init__()
        self.posting = asyncio.Event()
        self.release = asyncio.Event()

    async def create_agent_activity(self, session_id, content, ephemeral=False):
        if content.type == ActivityType.RESPONSE:
            self.posting.set()
            await self.release.wait()
        return await super().create_agent_activity(session_id, content, ephemeral)


@pytest.fixture
def controller(config, linear, agent):
    return AgentController(config, linear, agent)


class TestIdempotency:
    async def test_replayed_creation_runs_once(self, controller, agent):
        agent.messages = [AssistantText("Fixed in commit abc")]
        first = await controller.handle(P(session_created_payload("session-1")))
        second = await controller.handle(P(session_created_payload("session-1")))
        await controller.drain()

        assert first == {"received": True}
        assert second == {"received": True, "skipped": "duplicate"}
        assert len(agent.requests) == 1

    async def test_follow_up_dedup_by_activity(self, controller, agent):
        results = [
            await controller.handle(P(session_prompted_payload("session-1", "activity-1"))),
            await controller.handle(P(session_prompted_payload("session-1", "activity-2"))),
            await controller.handle(P(session_prompted_payload("session-1", "activity-2"))),
        ]
        await controller.drain()

        assert results[2] == {"received": True, "skipped": "duplicate"}
        assert len(agent.requests) == 2


class TestSelfTrigger:
    async def test_own_session_never_runs(self, controller, agent, linear):
        result = await controller.handle(P(session_created_payload(creator_id=AGENT_ID)))
        await controller.drain()

        assert result == {"received": True, "skipped": "self-trigger"}
        assert agent.requests == []
        assert linear.activities == []

    async def test_own_follow_up_never_runs(self, controller, agent):
        result = await controller.handle(P(session_prompted_payload(user_id=AGENT_ID)))
        await controller.drain()
        assert result["skipped"] == "self-trigger"
        assert agent.requests == []


class TestStop:
    async def test_stop_in_flight_run(self, controller, agent, linear):
        agent.hang = True
        await controller.handle(P(session_created_payload("session-1")))
        await asyncio.wait_for(agent.started.wait(), timeout=1)
        assert controller.active_runs == 1

        result = await controller.handle(P(stop_payload("session-1")))
        await controller.drain()

        assert result == {"received": True, "action": "stop-acknowledged", "cancelled": True}
        assert controller.active_runs == 0
        assert STOP_ACKNOWLEDGEMENT in linear.bodies("thought")
        assert linear.bodies("response") == [STOPPED_RESPONSE]

    async def test_stop_without_run(self, controller, linear):
        result = await controller.handle(P(stop_payload("session-1")))
        await controller.drain()

        assert result == {"received": True, "action": "stop-acknowledged", "cancelled": False}
        assert linear.activities == []

    async def test_stop_while_final_response_posts(self, config, agent):
        linear = SlowResponseLinear()
        controller = AgentController(config, linear, agent)
        agent.messages = [AssistantText("All fixed.")]
        await controller.handle(P(session_created_payload("session-1")))
        await asyncio.wait_for(linear.posting.wait(), timeout=1)

        result = await controller.handle(P(stop_payload("session-1")))
        linear.release.set()
        await controller.drain()

        assert result["cancelled"] is False
        assert STOP_ACKNOWLEDGEMENT not in linear.bodies("thought")
        assert linear.bodies("response") == ["All fixed."]
        assert controller.active_runs == 0

    async def test_stop_after_run_finished(self, controller, agent):
        agent.messages = [AssistantText("done")]
        await controller.handle(P(session_created_payload("session-1")))
        await controller.drain()

        result = await controller.handle(P(stop_payload("session-1")))
        assert result["cancelled"] is False


class TestDispatch:
    async def test_follow_up_resumes_conversation(self, controller, agent):
        agent.messages = [ConversationStarted("conv-1"), AssistantText("first answer")]
        await controller.handle(P(session_created_payload("session-1")))
        await controller.drain()

        agent.messages = [AssistantText("second answer")]
        await controller.handle(P(session_prompted_payload("session-1", "activity-1", body="More?")))
        await controller.drain()

        follow_up = agent.requests[1]
        assert follow_up.prompt == "More?"
        assert follow_up.resume_conversation_id == "conv-1"

    async def test_ignored_event(self, controller, agent):
        result = await controller.handle(P({"type": "Issue", "action": "update"}))
        assert result == {"received": True}
        assert controller.background_tasks == 0

    async def test_malformed_prompted_raises(self, controller):
        with pytest.raises(MalformedPayloadError):
            await controller.handle(P(session_prompted_payload(body="")))

    async def test_project_update_mention(self, controller, agent, linear):
        agent.messages = [AssistantText("Risks: none.")]
        result = await controller.handle(P(project_update_payload("update-1")))
        await controller.drain()

        assert result == {"received": True}
        assert linear.update_comments == [("update-1", "Risks: none.", None)]

    async def test_thread_reply_deduplicated(self, controller, agent):
        await controller.handle(P(thread_comment_payload("c-1")))
        second = await controller.handle(P(thread_comment_payload("c-1")))
        await controller.drain()
        assert second["skipped"] == "duplicate"
        assert len(agent.requests) == 1


class TestDebugPayloads:
    async def test_written_in_development(self, controller, config):
        await controller.handle(P(session_created_payload("session-1")))
        await controller.drain()
        dumped = json.loads((config.debug_dir / "linear-webhook-session_created.json").read_text())
        assert dumped["agentSession"]["id"] == "session-1"

    async def test_not_written_in_production(self, config, linear, agent):
        config.environment = "production"
        controller = AgentController(config, linear, agent)
        await controller.handle(P(session_created_payload("session-1")))
        await controller.drain()
        assert not (config.debug_dir / "linear-webhook-session_created.json").exists()


async def test_shutdown_cancels_runs(controller, agent):
    agent.hang = True
    await controller.handle(P(session_created_payload("session-1")))
    await asyncio.wait_for(agent.started.wait(), timeout=1)

    await controller.shutdown()

    assert controller.background_tasks == 0
    assert controller.active_runs == 0
