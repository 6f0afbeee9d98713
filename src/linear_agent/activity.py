"""Activity emitter — posts agent progress back to a Linear session.

All outbound text passes through :func:`sanitize_mentions` here, so no
caller can forget it. Emission never raises: a failed post is logged and
reported as ``False``. Terminal activities (response, error, elicitation)
get exactly one retry; losing one leaves the session without an end state
in Linear, which is the one user-visible consequence of a delivery failure.
"""

from __future__ import annotations

import logging

import httpx

from linear_agent.errors import LinearAPIError
from linear_agent.guard import sanitize_mentions
from linear_agent.linear_client import LinearClient
from linear_agent.models import ActivityContent, ActivityType

logger = logging.getLogger(__name__)


class ActivityEmitter:
    def __init__(
        self,
        client: LinearClient,
        *,
        mention_token: str = "claude",
        display_name: str = "Claude",
    ):
        self.client = client
        self.mention_token = mention_token
        self.display_name = display_name

    def sanitize(self, text: str | None) -> str | None:
        if text is None:
            return None
        return sanitize_mentions(text, self.mention_token, self.display_name)

    async def emit(self, session_id: str, content: ActivityContent, ephemeral: bool = False) -> bool:
        """Post one activity. Returns True only if Linear reported success."""
        content = content.model_copy(
            update={
                "body": self.sanitize(content.body),
                "parameter": self.sanitize(content.parameter),
                "result": self.sanitize(content.result),
            }
        )
        try:
            ok = await self.client.create_agent_activity(session_id, content, ephemeral)
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.error(
                "Failed to emit %s activity for session %s: %s",
                content.type.value,
                session_id,
                e,
            )
            return False
        if not ok:
            logger.error(
                "Linear rejected %s activity for session %s", content.type.value, session_id
            )
        return ok

    async def emit_terminal(self, session_id: str, content: ActivityContent) -> bool:
        """Post a terminal activity, retrying once on failure."""
        if await self.emit(session_id, content):
            return True
        logger.warning("Retrying %s activity for session %s", content.type.value, session_id)
        if await self.emit(session_id, content):
            return True
        logger.error(
            "Giving up on %s activity for session %s; session left without a final state",
            content.type.value,
            session_id,
        )
        return False

    # ── Typed helpers ────────────────────────────────────────────────────

    async def thought(self, session_id: str, body: str, ephemeral: bool = False) -> bool:
        return await self.emit(
            session_id, ActivityContent(type=ActivityType.THOUGHT, body=body), ephemeral
        )

    async def action(
        self, session_id: str, action: str, parameter: str, result: str | None = None
    ) -> bool:
        content = ActivityContent(
            type=ActivityType.ACTION, action=action, parameter=parameter, result=result
        )
        return await self.emit(session_id, content)

    async def response(self, session_id: str, body: str) -> bool:
        return await self.emit_terminal(
            session_id, ActivityContent(type=ActivityType.RESPONSE, body=body)
        )

    async def error(self, session_id: str, body: str) -> bool:
        return await self.emit_terminal(
            session_id, ActivityContent(type=ActivityType.ERROR, body=body)
        )

    async def elicitation(self, session_id: str, body: str) -> bool:
        return await self.emit_terminal(
            session_id, ActivityContent(type=ActivityType.ELICITATION, body=body)
        )

    # ── Comments ─────────────────────────────────────────────────────────

    async def post_comment(self, issue_id: str, body: str) -> bool:
        try:
            ok = await self.client.create_comment(issue_id, self.sanitize(body) or "")
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.error("Failed to post comment on issue %s: %s", issue_id, e)
            return False
        if not ok:
            logger.error("Linear rejected comment on issue %s", issue_id)
        return ok
