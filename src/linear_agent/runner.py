"""Session runner — drives one agent run for one Linear session.

State machine::

    STARTING → STREAMING → FINALIZING
                         ↘ CANCELLED
                         ↘ FAILED

STARTING posts an acknowledgement before any slow I/O (Linear marks a
session unresponsive if nothing arrives within ~10 seconds), resolves the
working directory and composes the prompt. STREAMING relays the agent's
messages as activities. FINALIZING turns the last assistant text into a
response or, when the agent asked for clarification, an elicitation that
keeps the session open.

Nothing escapes :meth:`SessionRunner.run`: by the time it executes the
webhook has already been answered, so every failure becomes an error
activity on the session.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from linear_agent.activity import ActivityEmitter
from linear_agent.agent import (
    AgentBackend,
    AgentMessage,
    AgentRequest,
    AssistantText,
    ConversationStarted,
    RunResult,
    ToolResult,
    ToolUse,
)
from linear_agent.config import AgentConfig
from linear_agent.models import AgentSessionData
from linear_agent.prompts import PromptContext, build_agent_prompt, parse_for_clarification
from linear_agent.registry import CancellationToken
from linear_agent.repo import RepoResolver
from linear_agent.session_store import ResumptionStore

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = (
    "I looked into this but couldn't formulate a response. Please try rephrasing your request."
)
STOPPED_RESPONSE = "Agent stopped by user request."

# Assistant text longer than this is also shown as an interim thought
THOUGHT_THRESHOLD = 100
THOUGHT_PREVIEW_CHARS = 150


class RunState(str, enum.Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SessionJob:
    """One unit of work for the runner."""

    session: AgentSessionData
    token: CancellationToken
    prompt_context: str | None = None
    user_message: str | None = None  # set for follow-ups

    @property
    def is_follow_up(self) -> bool:
        return self.user_message is not None


# ── Tool descriptions ────────────────────────────────────────────────────────

_FILE_TOOLS = {"Read": "Reading", "Write": "Writing", "Edit": "Editing"}


def tool_parameter(name: str, tool_input: dict[str, Any]) -> str:
    """Short, tool-specific form of a tool's main argument."""
    if name in _FILE_TOOLS:
        return str(tool_input.get("file_path") or "")[-60:]
    if name == "Glob":
        return str(tool_input.get("pattern") or "")
    if name == "Grep":
        return str(tool_input.get("pattern") or "")[:40]
    if name == "Bash":
        return str(tool_input.get("command") or "")[:60]
    return json.dumps(tool_input, default=str)[:80]


def describe_tool(name: str, tool_input: dict[str, Any]) -> str:
    """Human-readable line for an action activity."""
    parameter = tool_parameter(name, tool_input)
    if name in _FILE_TOOLS:
        return f"{_FILE_TOOLS[name]} {parameter}"
    if name == "Glob":
        return f"Searching for files: {parameter}"
    if name == "Grep":
        return f'Searching content: "{parameter}"'
    if name == "Bash":
        return f"Running: {parameter}"
    return f"{name}: {parameter}"


def summarize_tool_result(result: ToolResult) -> str | None:
    if not result.content:
        return None
    preview = result.content[:200].replace("\n", " ")
    if result.is_error:
        return f"❌ Error: {preview}"
    if len(preview) > 150:
        preview = preview[:150] + "..."
    return f"✓ {preview}"


@dataclass
class RunStats:
    """Counters for the end-of-run summary thought."""

    tool_calls: int = 0
    tools: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    reported_turns: int | None = None
    cost_usd: float | None = None

    def record_tool(self, name: str, tool_input: dict[str, Any]) -> None:
        self.tool_calls += 1
        if name not in self.tools:
            self.tools.append(name)
        if name in _FILE_TOOLS:
            path = tool_parameter(name, tool_input)
            if path and path not in self.files:
                self.files.append(path)

    def record_result(self, result: RunResult) -> None:
        # The agent's own turn count and cost are only reliable on success
        if result.success:
            self.reported_turns = result.num_turns
            self.cost_usd = result.total_cost_usd

    @property
    def steps(self) -> int:
        if self.reported_turns is not None:
            return self.reported_turns
        return self.tool_calls

    def summary(self) -> str | None:
        """One-line summary, or None for single-step runs."""
        if self.steps <= 1:
            return None
        parts = [f"Completed in {self.steps} steps"]
        if self.tools:
            parts.append(f"used {', '.join(self.tools)}")
        if self.files:
            count = len(self.files)
            parts.append(f"touched {count} file{'s' if count > 1 else ''}")
        if self.cost_usd:
            parts.append(f"cost: ${self.cost_usd:.4f}")
        return "📊 " + " | ".join(parts)


@dataclass
class _StreamState:
    last_text: str | None = None
    pending_tool_id: str | None = None
    conversation_saved: bool = False
    stats: RunStats = field(default_factory=RunStats)


# ── Runner ───────────────────────────────────────────────────────────────────


class SessionRunner:
    def __init__(
        self,
        agent: AgentBackend,
        emitter: ActivityEmitter,
        resolver: RepoResolver,
        store: ResumptionStore,
        config: AgentConfig,
    ):
        self.agent = agent
        self.emitter = emitter
        self.resolver = resolver
        self.store = store
        self.config = config

    async def run(self, job: SessionJob) -> RunState:
        """Execute one run to a terminal state. Never raises (except task cancellation)."""
        session = job.session
        started = time.monotonic()
        state = RunState.STARTING
        resume_id: str | None = None

        try:
            ack = (
                "Processing follow-up message..."
                if job.is_follow_up
                else f"Analyzing issue {session.issue_label}..."
            )
            await self.emitter.thought(session.id, ack)

            resolution = await self.resolver.resolve_for_issue(session.subject_id)
            if job.is_follow_up:
                resume_id = self.store.get(session.id)

            if resume_id:
                # Claude's conversation already holds the history
                prompt = job.user_message or ""
            else:
                prompt = build_agent_prompt(
                    PromptContext(
                        session=session,
                        repos_base=self.config.repos_base,
                        repo_path=resolution.repo_path,
                        clone_info=resolution.clone_info,
                        prompt_context=job.prompt_context,
                        user_message=job.user_message,
                        agent_name=self.config.agent_name,
                    )
                )

            logger.info(
                "Starting agent run for session %s (%s, follow_up=%s, resume=%s, cwd=%s)",
                session.id,
                session.issue_label,
                job.is_follow_up,
                resume_id,
                resolution.cwd,
            )

            state = RunState.STREAMING
            request = AgentRequest(
                prompt=prompt,
                cwd=resolution.cwd,
                token=job.token,
                resume_conversation_id=resume_id,
            )
            stream = _StreamState()
            cancelled = job.token.cancelled or await self._consume(job, request, stream)

            if cancelled:
                state = RunState.CANCELLED
                logger.info("Agent run for session %s stopped by user", session.id)
                await self.emitter.response(session.id, STOPPED_RESPONSE)
                return state

            job.token.settle()
            state = RunState.FINALIZING
            await self._finalize(session, stream)

        except Exception as e:
            job.token.settle()
            logger.exception("Agent run failed for session %s (state=%s)", session.id, state.value)
            state = RunState.FAILED
            self._evict(session.id)
            await self.emitter.error(session.id, f"I encountered an error: {e}")

        finally:
            logger.info(
                "Agent run for session %s ended in %s after %.1fs",
                session.id,
                state.value,
                time.monotonic() - started,
            )

        return state

    # ── Streaming ────────────────────────────────────────────────────────

    async def _consume(self, job: SessionJob, request: AgentRequest, stream: _StreamState) -> bool:
        """Relay agent messages until the stream ends. Returns True if cancelled."""
        messages = self.agent.stream(request).__aiter__()
        stop_waiter = asyncio.ensure_future(job.token.wait())
        next_message: asyncio.Future | None = None
        try:
            while True:
                next_message = asyncio.ensure_future(messages.__anext__())
                await asyncio.wait(
                    {next_message, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if not next_message.done():
                    return True
                try:
                    message = next_message.result()
                except StopAsyncIteration:
                    return job.token.cancelled
                if job.token.cancelled:
                    return True
                await self._handle(job.session, message, stream)
        finally:
            stop_waiter.cancel()
            # The stream can't be closed while a pending __anext__ is still inside it
            if next_message is not None and not next_message.done():
                next_message.cancel()
                await asyncio.wait({next_message})
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _handle(
        self, session: AgentSessionData, message: AgentMessage, stream: _StreamState
    ) -> None:
        if isinstance(message, ConversationStarted):
            self._save_conversation(session.id, message.conversation_id, stream)

        elif isinstance(message, AssistantText):
            stream.last_text = message.text
            if len(message.text) > THOUGHT_THRESHOLD:
                preview = message.text[:THOUGHT_PREVIEW_CHARS].replace("\n", " ")
                await self.emitter.thought(session.id, f"{preview}...")

        elif isinstance(message, ToolUse):
            stream.pending_tool_id = message.tool_use_id
            stream.stats.record_tool(message.name, message.input)
            description = describe_tool(message.name, message.input)
            logger.info(
                "Session %s tool use #%d: %s",
                session.id,
                stream.stats.tool_calls,
                description,
            )
            await self.emitter.action(session.id, message.name, description)

        elif isinstance(message, ToolResult):
            if stream.pending_tool_id is None:
                return
            stream.pending_tool_id = None
            summary = summarize_tool_result(message)
            if summary:
                await self.emitter.thought(session.id, summary)

        elif isinstance(message, RunResult):
            if message.conversation_id:
                self._save_conversation(session.id, message.conversation_id, stream)
            stream.stats.record_result(message)
            logger.info(
                "Agent finished for session %s (success=%s, steps=%d, cost=%s)",
                session.id,
                message.success,
                stream.stats.steps,
                stream.stats.cost_usd,
            )
            summary = stream.stats.summary()
            if summary:
                await self.emitter.thought(session.id, summary)

    def _save_conversation(self, session_id: str, conversation_id: str, stream: _StreamState) -> None:
        if stream.conversation_saved:
            return
        stream.conversation_saved = True
        try:
            self.store.set(session_id, conversation_id)
        except OSError as e:
            logger.warning("Could not persist conversation for session %s: %s", session_id, e)
            return
        logger.info("Captured conversation %s for session %s", conversation_id, session_id)

    def _evict(self, session_id: str) -> None:
        try:
            self.store.delete(session_id)
        except OSError as e:
            logger.warning("Could not evict conversation for session %s: %s", session_id, e)

    # ── Finalizing ───────────────────────────────────────────────────────

    async def _finalize(self, session: AgentSessionData, stream: _StreamState) -> None:
        if not stream.last_text:
            logger.warning("Agent produced no text for session %s, sending fallback", session.id)
            await self.emitter.response(session.id, FALLBACK_RESPONSE)
            return

        parsed = parse_for_clarification(stream.last_text)
        body = parsed.cleaned_text[: self.config.response_max_chars]
        if parsed.needs_clarification:
            ok = await self.emitter.elicitation(session.id, body)
        else:
            ok = await self.emitter.response(session.id, body)
        logger.info(
            "Final %s for session %s (%d chars, delivered=%s)",
            "elicitation" if parsed.needs_clarification else "response",
            session.id,
            len(body),
            ok,
        )
