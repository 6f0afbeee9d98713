"""Prompt templates for agent runs.

Everything here is a pure function of session data. Edit these to change
how the agent understands its role when invoked from Linear.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from linear_agent.models import AgentSessionData
from linear_agent.repo import CloneInfo

# The agent includes this when it cannot proceed without more input. The
# session is then left open (elicitation) instead of being closed.
CLARIFICATION_MARKER = "[NEEDS_CLARIFICATION]"


@dataclass(frozen=True)
class ClarificationResult:
    needs_clarification: bool
    cleaned_text: str


def parse_for_clarification(text: str) -> ClarificationResult:
    """Find the clarification marker anywhere in ``text`` and strip it.

    Text before the marker is kept as a preamble, separated from the rest by
    a blank line.
    """
    index = text.find(CLARIFICATION_MARKER)
    if index == -1:
        return ClarificationResult(needs_clarification=False, cleaned_text=text)

    preamble = text[:index].strip()
    rest = text[index + len(CLARIFICATION_MARKER) :].strip()
    cleaned = f"{preamble}\n\n{rest}" if preamble else rest
    return ClarificationResult(needs_clarification=True, cleaned_text=cleaned)


@dataclass
class PromptContext:
    session: AgentSessionData
    repos_base: Path
    repo_path: Path | None = None
    clone_info: CloneInfo | None = None
    prompt_context: str | None = None  # Linear's own rendering of the issue, when sent
    user_message: str | None = None  # follow-up text when no conversation can be resumed
    agent_name: str = "Claude"


def _environment_section(
    repo_path: Path | None, clone_info: CloneInfo | None, subject: str
) -> str:
    if repo_path:
        return f"- Codebase: {repo_path}"
    if clone_info:
        return (
            f"- Repo: {clone_info.git_url} (not yet cloned)\n"
            f"- To clone: `git clone {clone_info.git_url} {clone_info.clone_path}`\n"
            f"- After cloning, work in `{clone_info.clone_path}`"
        )
    return (
        f"- No codebase is linked to this {subject}'s project. You can still answer "
        "questions and do research. If the task needs code, suggest linking a repo "
        "to the project."
    )


def _clarification_section() -> str:
    return f"""## Asking for Clarification

If you cannot proceed without more information from the user, put this marker
on its own line in your response:

{CLARIFICATION_MARKER}

Anything before the marker is shown as context; anything after it should be
your questions. The conversation then stays open for the user to answer. Only
use it when you genuinely cannot continue."""


def _system_instructions(
    *,
    agent_name: str,
    repos_base: Path,
    repo_path: Path | None,
    clone_info: CloneInfo | None,
    issue_identifier: str | None,
) -> str:
    issue_ref = issue_identifier or "<ISSUE-ID>"
    env = _environment_section(repo_path, clone_info, "issue")
    if issue_identifier:
        env += f"\n- Current issue: {issue_identifier}"

    return f"""You are {agent_name}, an AI agent working through Linear.

## How You're Being Invoked

You were mentioned in a Linear issue. Your final message is posted back to
Linear, and the user watches your progress (tool calls, reasoning) in
Linear's agent panel.

## Environment

{env}

## Linear CLI (`lb`)

`lb` reads and links Linear issues. Run `lb --help` for details.

- `lb branch {issue_ref}` prints the branch name Linear generated for this issue.
- `lb attach {issue_ref} <url> [title]` attaches a link (PR, deployment) to the issue.
- `lb show {issue_ref} --sync` shows the full issue with attachments.

### Workflow for code changes

1. `git checkout -b $(lb branch {issue_ref})`
2. Make the change and run the tests.
3. Push and open a PR with `gh pr create`.
4. `lb attach {issue_ref} <pr-url> "PR #N: title"`

## Guidelines

1. Be concise. Your response appears as a Linear comment.
2. Investigate with tools before answering.
3. Stay on the issue at hand.
4. Read existing code before changing it.
5. Clone repositories only into `{repos_base}/<owner>/<repo>`.

{_clarification_section()}"""


def build_agent_prompt(ctx: PromptContext) -> str:
    """Full prompt for a fresh conversation about the session's issue.

    Raises:
        ValueError: The session carries no issue data.
    """
    session = ctx.session
    issue = session.issue
    if issue is None:
        raise ValueError("No issue data in session")

    if ctx.prompt_context:
        issue_context = ctx.prompt_context
    else:
        lines = [f'Issue {issue.identifier}: "{issue.title}"']
        if issue.description:
            lines.append(f"Description: {issue.description}")
        if session.comment and session.comment.body:
            lines.append(f"Comment: {session.comment.body}")
        issue_context = "\n".join(lines)

    instructions = _system_instructions(
        agent_name=ctx.agent_name,
        repos_base=ctx.repos_base,
        repo_path=ctx.repo_path,
        clone_info=ctx.clone_info,
        issue_identifier=issue.identifier,
    )

    if ctx.user_message:
        return (
            f"{instructions}\n\n## Current Issue Context\n\n{issue_context}\n\n"
            f"## User's Follow-up Message\n\n{ctx.user_message}\n\n"
            "Please help with this follow-up request."
        )
    return (
        f"{instructions}\n\n## Task\n\n{issue_context}\n\n"
        "Please investigate and help with this request."
    )


def build_project_update_prompt(
    *,
    project_name: str,
    project_id: str,
    update_body: str,
    repos_base: Path,
    user_name: str | None = None,
    repo_path: Path | None = None,
    clone_info: CloneInfo | None = None,
    agent_name: str = "Claude",
) -> str:
    """Prompt for a mention in a project update or its discussion thread."""
    author = user_name or "A teammate"
    env = _environment_section(repo_path, clone_info, "update")
    return f"""You are {agent_name}, an AI agent working through Linear.

{author} mentioned you in a project update for "{project_name}" (project id
{project_id}). Your reply is posted as a comment in the update's thread.

## Environment

{env}
- Clone repositories only into `{repos_base}/<owner>/<repo>`.

## Project Update

{update_body}

## Guidelines

1. Answer in a short comment: a few paragraphs at most.
2. Use tools to check facts against the codebase when one is available.
3. Do not modify code unless the update explicitly asks for it."""
