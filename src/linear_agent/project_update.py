"""Mentions in project updates and their discussion threads.

Project updates have no agent session, so there are no activities: the
agent's answer is posted as a thread comment, and emoji reactions stand in
for progress. 👀 means "seen", ``:claude:`` means "replied".
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from linear_agent.agent import AgentBackend, AgentRequest, AssistantText, RunResult
from linear_agent.config import AgentConfig
from linear_agent.errors import LinearAPIError
from linear_agent.guard import sanitize_mentions
from linear_agent.linear_client import LinearClient
from linear_agent.models import ProjectUpdateData, ThreadCommentData
from linear_agent.prompts import build_project_update_prompt
from linear_agent.registry import CancellationToken
from linear_agent.repo import RepoResolver
from linear_agent.runner import FALLBACK_RESPONSE

logger = logging.getLogger(__name__)

SEEN_REACTION = "eyes"
REPLIED_REACTION = "claude"


class ProjectUpdateHandler:
    def __init__(
        self,
        agent: AgentBackend,
        client: LinearClient,
        resolver: RepoResolver,
        config: AgentConfig,
    ):
        self.agent = agent
        self.client = client
        self.resolver = resolver
        self.config = config

    async def handle_update(self, update: ProjectUpdateData) -> None:
        """Answer a mention in the body of a new project update."""
        # Linear clears reactions added within ~2s of an update's creation
        await asyncio.sleep(self.config.project_update_reaction_delay)
        await self._react(SEEN_REACTION, project_update_id=update.id)

        user_name = update.user.name if update.user else None
        await self._respond(
            project_update_id=update.id,
            project_id=update.project_id,
            project_name=update.project_name,
            body=update.body,
            user_name=user_name,
            react_target={"project_update_id": update.id},
        )

    async def handle_reply(self, comment: ThreadCommentData, project_id: str | None = None) -> None:
        """Answer a mention in a comment on a project update's thread."""
        await self._react(SEEN_REACTION, comment_id=comment.id)
        user_name = comment.user.name if comment.user else None
        await self._respond(
            project_update_id=comment.project_update_id,
            project_id=project_id,
            project_name="this project",
            body=comment.body,
            user_name=user_name,
            parent_id=comment.parent_id or comment.id,
            react_target={"comment_id": comment.id},
        )

    async def _respond(
        self,
        *,
        project_update_id: str,
        project_id: str | None,
        project_name: str,
        body: str,
        user_name: str | None,
        react_target: dict[str, str],
        parent_id: str | None = None,
    ) -> None:
        started = time.monotonic()
        try:
            if project_id:
                resolution = await self.resolver.resolve_for_project(project_id)
            else:
                resolution = await self.resolver.resolve_for_issue(None)

            prompt = build_project_update_prompt(
                project_name=project_name,
                project_id=project_id or "unknown",
                update_body=body,
                repos_base=self.config.repos_base,
                user_name=user_name,
                repo_path=resolution.repo_path,
                clone_info=resolution.clone_info,
                agent_name=self.config.agent_name,
            )
            logger.info(
                "Starting project update run for %s (%s, cwd=%s)",
                project_update_id,
                project_name,
                resolution.cwd,
            )

            response_text = await self._collect_text(
                AgentRequest(prompt=prompt, cwd=resolution.cwd, token=CancellationToken())
            )
            if response_text:
                reply = response_text[: self.config.response_max_chars]
            else:
                logger.warning("Project update run for %s produced no text", project_update_id)
                reply = FALLBACK_RESPONSE
            ok = await self._comment(project_update_id, reply, parent_id)
            logger.info(
                "Posted project update reply on %s (%d chars, ok=%s, %.1fs)",
                project_update_id,
                len(reply),
                ok,
                time.monotonic() - started,
            )
        except Exception as e:
            logger.exception("Project update run failed for %s", project_update_id)
            await self._comment(project_update_id, f"I encountered an error: {e}", parent_id)

        # Reacted even on failure, so the author knows a reply was attempted
        await self._react(REPLIED_REACTION, **react_target)

    async def _collect_text(self, request: AgentRequest) -> str | None:
        text = None
        async for message in self.agent.stream(request):
            if isinstance(message, AssistantText):
                text = message.text
            elif isinstance(message, RunResult):
                logger.debug("Project update run finished (success=%s)", message.success)
        return text

    async def _comment(self, project_update_id: str, body: str, parent_id: str | None) -> bool:
        body = sanitize_mentions(body, self.config.mention_token, self.config.agent_name)
        try:
            return await self.client.create_project_update_comment(project_update_id, body, parent_id)
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.error("Failed to comment on project update %s: %s", project_update_id, e)
            return False

    async def _react(self, emoji: str, **target: str) -> bool:
        try:
            ok = await self.client.create_reaction(emoji, **target)
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.warning("Failed to add %s reaction (%s): %s", emoji, target, e)
            return False
        if not ok:
            logger.warning("Linear rejected %s reaction (%s)", emoji, target)
        return ok
