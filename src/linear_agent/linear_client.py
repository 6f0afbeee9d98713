"""Linear GraphQL API client.

Every call to Linear goes through :class:`LinearClient`. Mutation and query
bodies are built by plain functions so tests can assert on their shape
without a network. Authentication uses the app actor token
(``LINEAR_ACCESS_TOKEN``) as a bearer token.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from linear_agent.errors import LinearAPIError
from linear_agent.models import ActivityContent

logger = logging.getLogger(__name__)

LINEAR_API = "https://api.linear.app/graphql"

GraphQLBody = dict[str, Any]


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Verify Linear's HMAC-SHA256 webhook signature.

    Args:
        body: Raw request body bytes, exactly as received.
        signature: ``linear-signature`` header value (hex digest).
        secret: Webhook signing secret.

    Returns False for a missing signature or an unset secret; never raises.
    """
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    try:
        return hmac.compare_digest(expected, signature)
    except TypeError:
        # non-ASCII header value
        return False


# ── GraphQL builders ─────────────────────────────────────────────────────────


def comment_create_mutation(issue_id: str, body: str) -> GraphQLBody:
    return {
        "query": """
            mutation CreateComment($issueId: String!, $body: String!) {
              commentCreate(input: { issueId: $issueId, body: $body }) {
                success
                comment { id }
              }
            }
        """,
        "variables": {"issueId": issue_id, "body": body},
    }


def activity_create_mutation(
    session_id: str, content: ActivityContent, ephemeral: bool = False
) -> GraphQLBody:
    """Agent activity on a session. Ephemeral thoughts are replaced by the next activity."""
    return {
        "query": """
            mutation AgentActivityCreate($input: AgentActivityCreateInput!) {
              agentActivityCreate(input: $input) {
                success
              }
            }
        """,
        "variables": {
            "input": {
                "agentSessionId": session_id,
                "content": content.to_graphql(),
                "ephemeral": ephemeral,
            }
        },
    }


def project_update_comment_mutation(
    project_update_id: str, body: str, parent_id: str | None = None
) -> GraphQLBody:
    comment_input: dict[str, str] = {"projectUpdateId": project_update_id, "body": body}
    if parent_id:
        comment_input["parentId"] = parent_id
    return {
        "query": """
            mutation CreateProjectUpdateComment($input: CommentCreateInput!) {
              commentCreate(input: $input) {
                success
                comment { id }
              }
            }
        """,
        "variables": {"input": comment_input},
    }


def reaction_create_mutation(
    emoji: str,
    *,
    project_update_id: str | None = None,
    comment_id: str | None = None,
) -> GraphQLBody:
    if not project_update_id and not comment_id:
        raise ValueError("reaction needs a project update or comment target")
    reaction_input = {"emoji": emoji}
    if project_update_id:
        reaction_input["projectUpdateId"] = project_update_id
    if comment_id:
        reaction_input["commentId"] = comment_id
    return {
        "query": """
            mutation ReactionCreate($input: ReactionCreateInput!) {
              reactionCreate(input: $input) {
                success
              }
            }
        """,
        "variables": {"input": reaction_input},
    }


def issue_project_query(issue_id: str) -> GraphQLBody:
    """An issue's project and that project's external links (for repo lookup)."""
    return {
        "query": """
            query GetIssueProject($issueId: String!) {
              issue(id: $issueId) {
                project {
                  id
                  name
                  externalLinks {
                    nodes { url label }
                  }
                }
              }
            }
        """,
        "variables": {"issueId": issue_id},
    }


def project_links_query(project_id: str) -> GraphQLBody:
    return {
        "query": """
            query GetProjectExternalLinks($projectId: String!) {
              project(id: $projectId) {
                id
                name
                externalLinks {
                  nodes { url label }
                }
              }
            }
        """,
        "variables": {"projectId": project_id},
    }


def viewer_query() -> GraphQLBody:
    return {
        "query": """
            {
              viewer { id name active }
              organization { id name }
            }
        """,
        "variables": {},
    }


# ── Client ───────────────────────────────────────────────────────────────────


class LinearClient:
    """Async Linear API client authenticated as the agent's app user."""

    def __init__(
        self,
        *,
        access_token: str,
        webhook_secret: str = "",
        api_url: str = LINEAR_API,
        timeout: float = 10.0,
    ):
        self.access_token = access_token
        self.webhook_secret = webhook_secret
        self.api_url = api_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.access_token}",
                "User-Agent": "linear-agent/0.1.0",
            },
            timeout=self.timeout,
        )
        logger.info("Linear client started")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Linear client not started")
        return self._client

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        return verify_signature(payload, signature, self.webhook_secret)

    async def request(self, body: GraphQLBody) -> dict[str, Any]:
        """POST a GraphQL body and return its ``data`` object.

        Raises:
            httpx.HTTPError: Transport failure, timeout, or non-2xx status.
            LinearAPIError: The response carried GraphQL ``errors`` or was
                not a JSON object.
        """
        resp = await self.client.post(self.api_url, json=body)
        resp.raise_for_status()
        try:
            result = resp.json()
        except ValueError as e:
            raise LinearAPIError(
                f"Linear API returned non-JSON response (HTTP {resp.status_code})"
            ) from e
        if not isinstance(result, dict):
            raise LinearAPIError(f"Linear API returned unexpected {type(result).__name__} response")

        errors = result.get("errors")
        if errors:
            if not isinstance(errors, list):
                errors = [errors]
            messages = ", ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            raise LinearAPIError(f"Linear API error: {messages}", errors=errors)

        data = result.get("data")
        return data if isinstance(data, dict) else {}

    async def _mutate(self, body: GraphQLBody, field: str) -> bool:
        data = await self.request(body)
        return bool((data.get(field) or {}).get("success"))

    # ── Mutations ────────────────────────────────────────────────────────

    async def create_agent_activity(
        self, session_id: str, content: ActivityContent, ephemeral: bool = False
    ) -> bool:
        return await self._mutate(
            activity_create_mutation(session_id, content, ephemeral), "agentActivityCreate"
        )

    async def create_comment(self, issue_id: str, body: str) -> bool:
        return await self._mutate(comment_create_mutation(issue_id, body), "commentCreate")

    async def create_project_update_comment(
        self, project_update_id: str, body: str, parent_id: str | None = None
    ) -> bool:
        return await self._mutate(
            project_update_comment_mutation(project_update_id, body, parent_id), "commentCreate"
        )

    async def create_reaction(
        self,
        emoji: str,
        *,
        project_update_id: str | None = None,
        comment_id: str | None = None,
    ) -> bool:
        body = reaction_create_mutation(
            emoji, project_update_id=project_update_id, comment_id=comment_id
        )
        return await self._mutate(body, "reactionCreate")

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_issue_project(self, issue_id: str) -> dict | None:
        """Project (with external links) the issue belongs to, or None."""
        data = await self.request(issue_project_query(issue_id))
        issue = data.get("issue") or {}
        return issue.get("project")

    async def get_project(self, project_id: str) -> dict | None:
        data = await self.request(project_links_query(project_id))
        return data.get("project")

    async def viewer(self) -> dict:
        """Identity the access token acts as: ``{"viewer": ..., "organization": ...}``."""
        return await self.request(viewer_query())
