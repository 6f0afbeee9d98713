"""Agent controller — owns all session state and dispatches classified events.

One controller is built at startup and held by the HTTP layer. It owns the
dedup registry, the cancellation registry, the resumption store and the
background tasks running agent sessions. ``handle`` does only fast,
in-memory work before returning; runs continue in the background.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Coroutine

from linear_agent.activity import ActivityEmitter
from linear_agent.agent import AgentBackend
from linear_agent.classifier import classify
from linear_agent.config import AgentConfig
from linear_agent.guard import LoopGuard
from linear_agent.linear_client import LinearClient
from linear_agent.models import EventKind, WebhookEvent, WebhookPayload
from linear_agent.project_update import ProjectUpdateHandler
from linear_agent.registry import CancellationRegistry, CancellationToken, SessionRegistry
from linear_agent.repo import RepoResolver
from linear_agent.runner import SessionJob, SessionRunner
from linear_agent.session_store import ResumptionStore

logger = logging.getLogger(__name__)

STOP_ACKNOWLEDGEMENT = "Stopping..."


class AgentController:
    def __init__(
        self,
        config: AgentConfig,
        client: LinearClient,
        agent: AgentBackend,
        *,
        store: ResumptionStore | None = None,
        registry: SessionRegistry | None = None,
    ):
        self.config = config
        self.client = client
        self.agent = agent

        self.registry = registry or SessionRegistry(
            ttl=config.dedup_ttl_seconds, capacity=config.dedup_capacity
        )
        self.cancellations = CancellationRegistry()
        self.guard = LoopGuard(self.registry)
        self.store = store or ResumptionStore(config.session_map_path)

        self.emitter = ActivityEmitter(
            client, mention_token=config.mention_token, display_name=config.agent_name
        )
        self.resolver = RepoResolver(client, config.repos_base)
        self.runner = SessionRunner(agent, self.emitter, self.resolver, self.store, config)
        self.project_updates = ProjectUpdateHandler(agent, client, self.resolver, config)

        self._tasks: set[asyncio.Task] = set()

    @property
    def active_runs(self) -> int:
        return len(self.cancellations)

    @property
    def background_tasks(self) -> int:
        return len(self._tasks)

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def handle(self, payload: WebhookPayload) -> dict[str, Any]:
        """Act on a verified payload and return the webhook response body.

        Raises:
            MalformedPayloadError: The payload lacks data needed to act on it.
        """
        event = classify(payload, self.config.mention_token)
        logger.info(
            "Webhook %s/%s classified as %s (session=%s)",
            payload.type,
            payload.action,
            event.kind.value,
            event.session_id,
        )

        if event.kind == EventKind.IGNORED:
            return {"received": True}

        if event.kind == EventKind.STOP_SIGNAL:
            return self._stop(event)

        # Check and record happen with no await in between
        skip = self.guard.check(event)
        if skip is not None:
            return {"received": True, "skipped": skip}

        self._dump_payload(event)

        if event.kind in (EventKind.SESSION_CREATED, EventKind.SESSION_PROMPTED):
            self._start_session(event)
        elif event.kind == EventKind.THREAD_MENTION:
            self._spawn(
                self.project_updates.handle_update(event.project_update),
                name=f"project-update-{event.project_update.id}",
            )
        elif event.kind == EventKind.THREAD_REPLY:
            self._spawn(
                self.project_updates.handle_reply(event.thread_comment),
                name=f"thread-reply-{event.thread_comment.id}",
            )

        return {"received": True}

    def _start_session(self, event: WebhookEvent) -> None:
        session = event.session
        token = self.cancellations.register(session.id)
        job = SessionJob(
            session=session,
            token=token,
            prompt_context=event.payload.prompt_context,
            user_message=event.message if event.kind == EventKind.SESSION_PROMPTED else None,
        )
        self._spawn(self._run_session(job, token), name=f"session-{session.id}")

    async def _run_session(self, job: SessionJob, token: CancellationToken) -> None:
        try:
            await self.runner.run(job)
        finally:
            self.cancellations.release(job.session.id, token)

    def _stop(self, event: WebhookEvent) -> dict[str, Any]:
        session_id = event.session_id
        cancelled = self.cancellations.cancel(session_id)
        if cancelled:
            logger.info("Stop requested for session %s, cancelling run", session_id)
            self._spawn(
                self.emitter.thought(session_id, STOP_ACKNOWLEDGEMENT, ephemeral=True),
                name=f"stop-ack-{session_id}",
            )
        else:
            logger.info("Stop requested for session %s with no active run", session_id)
        return {"received": True, "action": "stop-acknowledged", "cancelled": cancelled}

    # ── Background tasks ─────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every background task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop in-flight runs and cancel remaining background tasks."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            logger.info("Cancelling %d background task(s)", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Debugging ────────────────────────────────────────────────────────

    def _dump_payload(self, event: WebhookEvent) -> None:
        """Keep the latest payload per event kind on disk (development only)."""
        if self.config.is_production:
            return
        path = self.config.debug_dir / f"linear-webhook-{event.kind.value}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(
                    event.payload.model_dump(mode="json", by_alias=True, exclude_none=True),
                    indent=2,
                )
            )
        except OSError as e:
            logger.warning("Could not write debug payload to %s: %s", path, e)
