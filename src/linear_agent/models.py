"""Core data models for the Linear agent.

Webhook payload shapes are derived from real Linear deliveries. Field names
are snake_case in Python and camelCase on the wire (aliases generated).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class LinearModel(BaseModel):
    """Base for Linear wire models — camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Webhook payload pieces ───────────────────────────────────────────────────


class TeamData(LinearModel):
    id: str
    key: str | None = None
    name: str | None = None


class IssueData(LinearModel):
    id: str
    identifier: str | None = None
    title: str | None = None
    description: str | None = None
    url: str | None = None
    team_id: str | None = None
    team: TeamData | None = None


class CommentData(LinearModel):
    id: str
    body: str | None = None
    user_id: str | None = Field(default=None, description="Author of the comment")
    issue_id: str | None = None


class UserData(LinearModel):
    id: str
    name: str | None = None
    email: str | None = None


class AgentSessionData(LinearModel):
    """The agent session a webhook refers to (one conversation thread)."""

    id: str
    issue_id: str | None = None
    comment_id: str | None = None
    status: str | None = None
    type: str | None = None
    creator_id: str | None = Field(default=None, description="User who started the session")
    app_user_id: str | None = Field(default=None, description="Our agent's user id")
    issue: IssueData | None = None
    comment: CommentData | None = None
    creator: UserData | None = None

    @property
    def subject_id(self) -> str | None:
        """Issue this session is attached to."""
        if self.issue_id:
            return self.issue_id
        return self.issue.id if self.issue else None

    @property
    def issue_label(self) -> str:
        if self.issue and self.issue.identifier:
            return self.issue.identifier
        return self.subject_id or "unknown issue"


class AgentActivityContent(LinearModel):
    type: str | None = None
    body: str | None = None


class AgentActivityData(LinearModel):
    """Activity attached to a ``prompted`` event.

    The user's message lives in ``content.body``. Deliveries may also carry a
    top-level ``body`` key on the activity itself; it is deliberately not
    modelled so nothing can read the message from the wrong level.
    """

    id: str | None = None
    agent_session_id: str | None = None
    user_id: str | None = None
    source_comment_id: str | None = None
    signal: str | None = Field(default=None, description='"stop" when the user clicks stop')
    content: AgentActivityContent | None = None


class ProjectUpdateData(LinearModel):
    id: str
    body: str = ""
    project_id: str
    user_id: str | None = None
    health: str | None = None
    project: dict[str, Any] | None = None
    user: UserData | None = None

    @property
    def project_name(self) -> str:
        if self.project and self.project.get("name"):
            return str(self.project["name"])
        return "Unknown Project"


class ThreadCommentData(LinearModel):
    """A comment posted in a project update's discussion thread."""

    id: str
    body: str = ""
    project_update_id: str
    parent_id: str | None = None
    user_id: str | None = None
    user: UserData | None = None


class WebhookPayload(LinearModel):
    """A verified, parsed Linear webhook delivery."""

    type: str
    action: str
    created_at: str | None = None
    app_user_id: str | None = None
    agent_session: AgentSessionData | None = None
    agent_activity: AgentActivityData | None = None
    prompt_context: str | None = None
    data: dict[str, Any] | None = None

    @property
    def agent_user_id(self) -> str | None:
        """Our agent's own identity as reported by Linear."""
        if self.app_user_id:
            return self.app_user_id
        if self.agent_session:
            return self.agent_session.app_user_id
        return None


# ── Outbound activities ──────────────────────────────────────────────────────


class ActivityType(str, enum.Enum):
    """Agent activity content types understood by Linear."""

    THOUGHT = "thought"
    ACTION = "action"
    RESPONSE = "response"
    ERROR = "error"
    ELICITATION = "elicitation"


class ActivityContent(BaseModel):
    """One unit of progress posted to an agent session."""

    type: ActivityType
    body: str | None = None
    action: str | None = None
    parameter: str | None = None
    result: str | None = None

    def to_graphql(self) -> dict[str, str]:
        return self.model_dump(mode="json", exclude_none=True)


# ── Classified events ────────────────────────────────────────────────────────


class EventKind(str, enum.Enum):
    SESSION_CREATED = "session_created"
    SESSION_PROMPTED = "session_prompted"
    STOP_SIGNAL = "stop_signal"
    THREAD_MENTION = "thread_mention"
    THREAD_REPLY = "thread_reply"
    IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookEvent:
    """A webhook after classification. Built once per request, then dispatched."""

    kind: EventKind
    payload: WebhookPayload
    created_at: datetime | None = None
    actor_id: str | None = None
    agent_id: str | None = None
    dedup_key: str | None = None
    session: AgentSessionData | None = None
    message: str | None = None
    project_update: ProjectUpdateData | None = None
    thread_comment: ThreadCommentData | None = None

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session else None

    @property
    def is_self_triggered(self) -> bool:
        """Whether our own agent identity produced this event."""
        if not self.actor_id or not self.agent_id:
            return False
        return self.actor_id == self.agent_id
