"""Tests for the activity emitter."""

import httpx
import pytest
import respx

from fakes import FakeLinearClient
from linear_agent.activity import ActivityEmitter
from linear_agent.errors import LinearAPIError
from linear_agent.linear_client import LINEAR_API, LinearClient
from linear_agent.models import ActivityContent, ActivityType


@pytest.fixture
def emitter(linear):
    return ActivityEmitter(linear)


class TestEmit:
    async def test_thought(self, emitter, linear):
        assert await emitter.thought("session-1", "Analyzing issue ENG-42...") is True
        session_id, content, ephemeral = linear.activities[0]
        assert session_id == "session-1"
        assert content.type == ActivityType.THOUGHT
        assert ephemeral is False

    async def test_ephemeral_thought(self, emitter, linear):
        await emitter.thought("session-1", "Stopping...", ephemeral=True)
        assert linear.activities[0][2] is True

    async def test_sanitizes_every_text_field(self, emitter, linear):
        content = ActivityContent(
            type=ActivityType.ACTION,
            action="Bash",
            parameter="Running: echo @claude",
            result="pinged @alice",
        )
        await emitter.emit("session-1", content)
        sent = linear.activities[0][1]
        assert sent.parameter == "Running: echo Claude"
        assert sent.result == "pinged alice"

    async def test_response_body_sanitized(self, emitter, linear):
        await emitter.response("session-1", "Done, @claude out. cc @bob")
        assert linear.bodies("response") == ["Done, Claude out. cc bob"]

    async def test_transport_error_returns_false(self, emitter, linear):
        linear.activity_error = httpx.ConnectTimeout("timed out")
        assert await emitter.thought("session-1", "x") is False

    async def test_graphql_error_returns_false(self, emitter, linear):
        linear.activity_error = LinearAPIError("Linear API error: nope")
        assert await emitter.thought("session-1", "x") is False


class TestTerminalRetry:
    async def test_retries_once_after_failure(self):
        linear = FakeLinearClient(activity_failures=1)
        emitter = ActivityEmitter(linear)
        assert await emitter.response("session-1", "Fixed") is True
        assert linear.bodies("response") == ["Fixed"]

    async def test_gives_up_after_second_failure(self, caplog):
        linear = FakeLinearClient(activity_failures=2)
        emitter = ActivityEmitter(linear)
        assert await emitter.error("session-1", "boom") is False
        assert linear.activities == []
        assert linear.activity_failures == 0
        assert "Giving up" in caplog.text

    async def test_non_terminal_not_retried(self):
        linear = FakeLinearClient(activity_failures=1)
        emitter = ActivityEmitter(linear)
        assert await emitter.thought("session-1", "x") is False
        assert linear.activities == []


async def test_post_comment_sanitized(emitter, linear):
    assert await emitter.post_comment("issue-1", "Ping @claude") is True
    assert linear.comments == [("issue-1", "Ping Claude")]


@respx.mock
async def test_non_json_reply_from_linear_returns_false():
    respx.post(LINEAR_API).mock(return_value=httpx.Response(200, text="<html>bad gateway</html>"))
    client = LinearClient(access_token="lin_api_test")
    await client.start()
    try:
        emitter = ActivityEmitter(client)
        assert await emitter.thought("session-1", "hi") is False
        assert await emitter.response("session-1", "done") is False
        assert await emitter.post_comment("issue-1", "hello") is False
    finally:
        await client.close()
