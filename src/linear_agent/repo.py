"""Working-directory resolution for agent runs.

Resolution chain: issue → project → external links → GitHub URL →
``repos_base/<org>/<repo>``. A linked repo that isn't checked out yet runs
in the scratch directory with clone instructions for the agent. No link, or
any lookup failure, falls back to the bare scratch directory.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx

from linear_agent.errors import LinearAPIError
from linear_agent.linear_client import LinearClient

logger = logging.getLogger(__name__)

_SSH_RE = re.compile(r"git@github\.com:([^/]+)/([^/\s]+)")


@dataclass(frozen=True)
class GitHubRepo:
    org: str
    repo: str

    @property
    def slug(self) -> str:
        return f"{self.org}/{self.repo}"


@dataclass(frozen=True)
class CloneInfo:
    git_url: str
    clone_path: Path


@dataclass(frozen=True)
class RepoResolution:
    cwd: Path
    repo_path: Path | None = None
    clone_info: CloneInfo | None = None


def parse_github_url(url: str) -> GitHubRepo | None:
    """Parse an HTTPS or SSH GitHub URL into org/repo. Extra path segments are ignored."""
    match = _SSH_RE.match(url.strip())
    if match:
        return GitHubRepo(match.group(1), _strip_git(match.group(2)))

    parsed = urlparse(url.strip())
    if not parsed.hostname or "github.com" not in parsed.hostname:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        return None
    return GitHubRepo(parts[0], _strip_git(parts[1]))


def _strip_git(name: str) -> str:
    return name[:-4] if name.endswith(".git") else name


def find_github_link(links: list[dict]) -> str | None:
    """First external link pointing at github.com."""
    for link in links:
        url = link.get("url") or ""
        if "github.com" in url:
            return url
    return None


class RepoResolver:
    def __init__(self, client: LinearClient, repos_base: Path):
        self.client = client
        self.repos_base = Path(repos_base)

    @property
    def scratch_dir(self) -> Path:
        return self.repos_base / "_scratch"

    async def resolve_for_issue(self, issue_id: str | None) -> RepoResolution:
        if not issue_id:
            return self._scratch()
        try:
            project = await self.client.get_issue_project(issue_id)
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.warning("Failed to resolve repo for issue %s: %s", issue_id, e)
            return self._scratch()
        return self._from_project(project, f"issue {issue_id}")

    async def resolve_for_project(self, project_id: str) -> RepoResolution:
        try:
            project = await self.client.get_project(project_id)
        except (httpx.HTTPError, LinearAPIError) as e:
            logger.warning("Failed to resolve repo for project %s: %s", project_id, e)
            return self._scratch()
        return self._from_project(project, f"project {project_id}")

    def _from_project(self, project: dict | None, subject: str) -> RepoResolution:
        if not project:
            return self._scratch()

        nodes = (project.get("externalLinks") or {}).get("nodes") or []
        github_url = find_github_link(nodes)
        repo = parse_github_url(github_url) if github_url else None
        if repo is None:
            return self._scratch()

        repo_dir = self.repos_base / repo.org / repo.repo
        if repo_dir.exists():
            logger.info(
                "Resolved %s to %s via project %s (%s)",
                subject,
                repo.slug,
                project.get("name"),
                repo_dir,
            )
            return RepoResolution(cwd=repo_dir, repo_path=repo_dir)

        logger.info("Repo %s linked but not on disk (expected %s)", repo.slug, repo_dir)
        return RepoResolution(
            cwd=self._ensure_scratch(),
            clone_info=CloneInfo(git_url=github_url, clone_path=repo_dir),
        )

    def _scratch(self) -> RepoResolution:
        scratch = self._ensure_scratch()
        logger.info("Using scratch directory %s", scratch)
        return RepoResolution(cwd=scratch)

    def _ensure_scratch(self) -> Path:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        return self.scratch_dir
