"""Webhook classifier — maps a Linear payload to exactly one event kind.

Pure function of the payload: no I/O, no registry lookups. Guards and
dispatch live in the controller.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import ValidationError

from linear_agent.errors import MalformedPayloadError
from linear_agent.models import (
    EventKind,
    ProjectUpdateData,
    ThreadCommentData,
    WebhookEvent,
    WebhookPayload,
)

AGENT_SESSION_EVENT = "AgentSessionEvent"
PROJECT_UPDATE_EVENT = "ProjectUpdate"
COMMENT_EVENT = "Comment"

STOP_SIGNAL = "stop"


def mentions_agent(text: str | None, mention_token: str) -> bool:
    """Case-insensitive substring match for ``@<token>``."""
    if not text:
        return False
    return f"@{mention_token}".lower() in text.lower()


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def classify(payload: WebhookPayload, mention_token: str = "claude") -> WebhookEvent:
    """Classify a verified payload.

    Raises:
        MalformedPayloadError: The event type is one we act on but the nested
            data needed to act is missing.
    """
    created_at = _parse_timestamp(payload.created_at)
    agent_id = payload.agent_user_id

    if payload.type == AGENT_SESSION_EVENT and payload.action == "created":
        session = payload.agent_session
        if session is None:
            raise MalformedPayloadError("No session data")
        return WebhookEvent(
            kind=EventKind.SESSION_CREATED,
            payload=payload,
            created_at=created_at,
            actor_id=session.creator_id or (session.creator.id if session.creator else None),
            agent_id=agent_id,
            dedup_key=session.id,
            session=session,
        )

    if payload.type == AGENT_SESSION_EVENT and payload.action == "prompted":
        session = payload.agent_session
        if session is None:
            raise MalformedPayloadError("No session data")
        activity = payload.agent_activity
        creator = session.creator_id or (session.creator.id if session.creator else None)
        actor_id = (activity.user_id if activity else None) or creator

        if activity is not None and activity.signal == STOP_SIGNAL:
            return WebhookEvent(
                kind=EventKind.STOP_SIGNAL,
                payload=payload,
                created_at=created_at,
                actor_id=actor_id,
                agent_id=agent_id,
                session=session,
            )

        # The message lives in content.body, not on the activity itself
        message = activity.content.body if activity and activity.content else None
        if not message:
            raise MalformedPayloadError("No user message")
        activity_id = activity.id if activity and activity.id else "unknown"
        return WebhookEvent(
            kind=EventKind.SESSION_PROMPTED,
            payload=payload,
            created_at=created_at,
            actor_id=actor_id,
            agent_id=agent_id,
            dedup_key=f"{session.id}:{activity_id}",
            session=session,
            message=message,
        )

    if payload.type == PROJECT_UPDATE_EVENT and payload.action == "create":
        data = payload.data or {}
        if mentions_agent(data.get("body"), mention_token):
            update = _validate(ProjectUpdateData, data)
            return WebhookEvent(
                kind=EventKind.THREAD_MENTION,
                payload=payload,
                created_at=created_at,
                actor_id=update.user_id,
                agent_id=agent_id,
                dedup_key=f"project-update:{update.id}",
                message=update.body,
                project_update=update,
            )

    if payload.type == COMMENT_EVENT and payload.action == "create":
        data = payload.data or {}
        if data.get("projectUpdateId") and mentions_agent(data.get("body"), mention_token):
            comment = _validate(ThreadCommentData, data)
            return WebhookEvent(
                kind=EventKind.THREAD_REPLY,
                payload=payload,
                created_at=created_at,
                actor_id=comment.user_id,
                agent_id=agent_id,
                dedup_key=f"comment:{comment.id}",
                message=comment.body,
                thread_comment=comment,
            )

    return WebhookEvent(
        kind=EventKind.IGNORED,
        payload=payload,
        created_at=created_at,
        agent_id=agent_id,
    )


def _validate(model, data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Invalid {model.__name__}: {exc.error_count()} error(s)")
