"""Tests for working-directory resolution."""

import httpx
import pytest

from fakes import FakeLinearClient
from linear_agent.repo import GitHubRepo, RepoResolver, find_github_link, parse_github_url


def _project(url: str | None) -> dict:
    nodes = [{"url": "https://docs.example.com/spec", "label": "Spec"}]
    if url:
        nodes.append({"url": url, "label": "Repo"})
    return {"id": "project-1", "name": "Checkout", "externalLinks": {"nodes": nodes}}


class TestParseGitHubUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/shop",
            "https://github.com/acme/shop.git",
            "https://github.com/acme/shop/tree/main/src",
            "git@github.com:acme/shop.git",
        ],
    )
    def test_variants(self, url):
        assert parse_github_url(url) == GitHubRepo("acme", "shop")

    def test_dotted_repo_name(self):
        assert parse_github_url("https://github.com/acme/shop.web") == GitHubRepo("acme", "shop.web")

    @pytest.mark.parametrize(
        "url", ["https://gitlab.com/acme/shop", "https://github.com/acme", "not a url"]
    )
    def test_rejects(self, url):
        assert parse_github_url(url) is None


def test_find_github_link():
    assert find_github_link(_project("https://github.com/acme/shop")["externalLinks"]["nodes"]) == (
        "https://github.com/acme/shop"
    )
    assert find_github_link(_project(None)["externalLinks"]["nodes"]) is None


class TestRepoResolver:
    async def test_repo_on_disk(self, tmp_path):
        repo_dir = tmp_path / "acme" / "shop"
        repo_dir.mkdir(parents=True)
        resolver = RepoResolver(FakeLinearClient(project=_project("https://github.com/acme/shop")), tmp_path)

        resolution = await resolver.resolve_for_issue("issue-1")

        assert resolution.cwd == repo_dir
        assert resolution.repo_path == repo_dir
        assert resolution.clone_info is None

    async def test_linked_but_not_cloned(self, tmp_path):
        resolver = RepoResolver(FakeLinearClient(project=_project("git@github.com:acme/shop.git")), tmp_path)

        resolution = await resolver.resolve_for_project("project-1")

        assert resolution.cwd == tmp_path / "_scratch"
        assert resolution.cwd.is_dir()
        assert resolution.repo_path is None
        assert resolution.clone_info.git_url == "git@github.com:acme/shop.git"
        assert resolution.clone_info.clone_path == tmp_path / "acme" / "shop"

    async def test_no_github_link(self, tmp_path):
        resolver = RepoResolver(FakeLinearClient(project=_project(None)), tmp_path)
        resolution = await resolver.resolve_for_issue("issue-1")
        assert resolution.cwd == tmp_path / "_scratch"
        assert resolution.clone_info is None

    async def test_no_project(self, tmp_path):
        resolver = RepoResolver(FakeLinearClient(project=None), tmp_path)
        assert (await resolver.resolve_for_issue("issue-1")).cwd == tmp_path / "_scratch"

    async def test_no_issue_id(self, tmp_path):
        resolver = RepoResolver(FakeLinearClient(), tmp_path)
        assert (await resolver.resolve_for_issue(None)).cwd == tmp_path / "_scratch"

    async def test_lookup_failure_falls_back(self, tmp_path):
        class FailingClient(FakeLinearClient):
            async def get_issue_project(self, issue_id):
                raise httpx.ReadTimeout("slow")

        resolver = RepoResolver(FailingClient(), tmp_path)
        resolution = await resolver.resolve_for_issue("issue-1")
        assert resolution.cwd == tmp_path / "_scratch"
