"""Agent capability — runs Claude and yields normalized messages.

The runner consumes :class:`AgentMessage` values only, never SDK types, so
any :class:`AgentBackend` (the real :class:`ClaudeAgent` or a test fake) can
drive a session. Cancellation is cooperative: the backend checks the token
between messages, and the runner additionally stops waiting as soon as the
token fires.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Protocol, Union

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)

from linear_agent.config import AgentRuntimeConfig
from linear_agent.registry import CancellationToken

logger = logging.getLogger(__name__)


# ── Normalized messages ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConversationStarted:
    """Carries Claude's own conversation id, used to resume later."""

    conversation_id: str


@dataclass(frozen=True)
class AssistantText:
    text: str


@dataclass(frozen=True)
class ToolUse:
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str | None
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class RunResult:
    """Terminal message of a run."""

    success: bool
    num_turns: int | None = None
    total_cost_usd: float | None = None
    result: str | None = None
    conversation_id: str | None = None


AgentMessage = Union[ConversationStarted, AssistantText, ToolUse, ToolResult, RunResult]


@dataclass
class AgentRequest:
    prompt: str
    cwd: Path
    token: CancellationToken
    resume_conversation_id: str | None = None


class AgentBackend(Protocol):
    def stream(self, request: AgentRequest) -> AsyncIterator[AgentMessage]: ...


# ── Claude Agent SDK adapter ─────────────────────────────────────────────────


def _result_text(content: Any) -> str:
    """Flatten tool result content (str or list of content blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return str(content)


def normalize(message: Any) -> list[AgentMessage]:
    """Translate one SDK message into zero or more normalized messages."""
    if isinstance(message, SystemMessage):
        if message.subtype == "init":
            conversation_id = (message.data or {}).get("session_id")
            if conversation_id:
                return [ConversationStarted(conversation_id)]
        return []

    if isinstance(message, (AssistantMessage, UserMessage)):
        content = message.content
        if isinstance(content, str):
            return [AssistantText(content)] if isinstance(message, AssistantMessage) else []
        out: list[AgentMessage] = []
        for block in content:
            if isinstance(block, TextBlock) and isinstance(message, AssistantMessage):
                out.append(AssistantText(block.text))
            elif isinstance(block, ToolUseBlock):
                out.append(ToolUse(block.id, block.name, dict(block.input or {})))
            elif isinstance(block, ToolResultBlock):
                out.append(
                    ToolResult(
                        block.tool_use_id,
                        _result_text(block.content),
                        bool(block.is_error),
                    )
                )
        return out

    if isinstance(message, ResultMessage):
        return [
            RunResult(
                success=message.subtype == "success" and not message.is_error,
                num_turns=message.num_turns,
                total_cost_usd=message.total_cost_usd,
                result=message.result,
                conversation_id=message.session_id,
            )
        ]

    return []


class ClaudeAgent:
    """Runs the Claude Agent SDK with the configured model and permissions."""

    def __init__(self, config: AgentRuntimeConfig | None = None):
        self.config = config or AgentRuntimeConfig()

    def options_for(self, request: AgentRequest) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "cwd": str(request.cwd),
            "permission_mode": self.config.permission_mode,
        }
        if request.resume_conversation_id:
            kwargs["resume"] = request.resume_conversation_id
        if self.config.model:
            kwargs["model"] = self.config.model
        if self.config.max_turns:
            kwargs["max_turns"] = self.config.max_turns
        return ClaudeAgentOptions(**kwargs)

    async def stream(self, request: AgentRequest) -> AsyncIterator[AgentMessage]:
        options = self.options_for(request)
        logger.info(
            "Starting Claude run (cwd=%s, resume=%s)",
            request.cwd,
            request.resume_conversation_id,
        )
        messages = query(prompt=request.prompt, options=options)
        try:
            async for message in messages:
                if request.token.cancelled:
                    logger.info("Cancellation observed, stopping Claude stream")
                    return
                for normalized in normalize(message):
                    yield normalized
        finally:
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                await aclose()
