"""Tests for remote parsing, token resolution and the pull request client."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from agent_sessions.errors import AuthError, GitError, NetworkError, RemoteParseError
from agent_sessions.models import RunnerConfig
from agent_sessions.pull_requests import (
    PullRequestClient,
    gh_auth_token,
    parse_remote,
    pull_request_body,
    pull_request_title,
    resolve_github_token,
)


class TestParseRemote:
    @pytest.mark.parametrize("url", [
        "git@github.com:owner/repo.git",
        "git@github.com:owner/repo",
        "https://github.com/owner/repo.git",
        "https://github.com/owner/repo",
        "git@personal.github.com:owner/repo.git",
        "https://www.github.com/owner/repo/",
        "  https://github.com/owner/repo.git\n",
    ])
    def test_accepted_forms(self, url):
        info = parse_remote(url)
        assert (info.owner, info.repo) == ("owner", "repo")

    def test_https_extra_segments_are_ignored(self):
        info = parse_remote("https://github.com/owner/repo/tree/main")
        assert (info.owner, info.repo) == ("owner", "repo")

    @pytest.mark.parametrize("url", [
        "https://gitlab.com/owner/repo",
        "https://notgithub.com/owner/repo",
        "http://github.com/owner/repo",
        "git@gitlab.com:owner/repo.git",
        "git@github.com:owner/group/repo.git",
        "git@github.com:repo.git",
        "https://github.com/owner",
        "/srv/git/repo.git",
        "",
    ])
    def test_rejected_forms(self, url):
        with pytest.raises(RemoteParseError):
            parse_remote(url)

    def test_parse_error_is_a_git_error(self):
        with pytest.raises(GitError, match="Could not parse GitHub remote URL"):
            parse_remote("https://gitlab.com/owner/repo")

    def test_custom_domain(self):
        info = parse_remote("https://git.example.org/team/tool.git", domain="example.org")
        assert (info.owner, info.repo) == ("team", "tool")


class TestResolveToken:
    def test_gh_auth_token_strips_output(self):
        completed = subprocess.CompletedProcess(["gh"], 0, stdout="gho_abc\n", stderr="")
        with patch("agent_sessions.pull_requests.subprocess.run", return_value=completed):
            assert gh_auth_token() == "gho_abc"

    def test_gh_auth_token_when_gh_missing(self):
        with patch("agent_sessions.pull_requests.subprocess.run", side_effect=FileNotFoundError("gh")):
            assert gh_auth_token() is None

    def test_gh_auth_token_when_logged_out(self):
        failed = subprocess.CompletedProcess(["gh"], 1, stdout="", stderr="not logged in")
        with patch("agent_sessions.pull_requests.subprocess.run", return_value=failed):
            assert gh_auth_token() is None

    def test_credentials_file_wins(self, tmp_path: Path):
        creds = tmp_path / "credentials.json"
        creds.write_text(json.dumps({"github_token": "from-file"}))
        with patch("agent_sessions.pull_requests.gh_auth_token") as gh:
            assert resolve_github_token(creds, environ={"GITHUB_TOKEN": "from-env"}) == "from-file"
            gh.assert_not_called()

    def test_gh_cli_before_env(self, tmp_path: Path):
        with patch("agent_sessions.pull_requests.gh_auth_token", return_value="from-gh"):
            token = resolve_github_token(tmp_path / "none.json", environ={"GITHUB_TOKEN": "from-env"})
        assert token == "from-gh"

    def test_env_when_gh_unavailable(self, tmp_path: Path):
        with patch("agent_sessions.pull_requests.gh_auth_token", return_value=None):
            token = resolve_github_token(tmp_path / "none.json", environ={"GITHUB_TOKEN": "from-env"})
        assert token == "from-env"

    def test_empty_file_token_is_skipped(self, tmp_path: Path):
        creds = tmp_path / "credentials.json"
        creds.write_text(json.dumps({"github_token": ""}))
        with patch("agent_sessions.pull_requests.gh_auth_token", return_value=None):
            assert resolve_github_token(creds, environ={"GITHUB_TOKEN": "from-env"}) == "from-env"

    def test_no_token_anywhere(self, tmp_path: Path):
        with patch("agent_sessions.pull_requests.gh_auth_token", return_value=None):
            with pytest.raises(AuthError):
                resolve_github_token(tmp_path / "none.json", environ={})


class TestTitleAndBody:
    def test_title_uses_first_line(self):
        assert pull_request_title("Fix login\n\nDetails here") == "claude: Fix login"

    def test_title_is_capped(self):
        title = pull_request_title("x" * 200)
        assert len(title) == 72
        assert title.endswith("...")

    def test_body_mentions_task_and_session(self):
        body = pull_request_body("Do the thing", "abc123")
        assert body.startswith("## Task\n\nDo the thing")
        assert "abc123" in body


class TestPullRequestClient:
    def make_client(self, handler, token: str = "tok") -> PullRequestClient:
        return PullRequestClient(
            RunnerConfig(),
            token=token,
            transport=httpx.MockTransport(handler),
        )

    def test_creates_pull_request(self, make_repo):
        repo = make_repo(origin="git@github.com:octo/widgets.git")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"html_url": "https://github.com/octo/widgets/pull/5"})

        url = self.make_client(handler).create_pull_request(
            repo, "claude: title", "body", "claude/branch-1", "main"
        )

        assert url == "https://github.com/octo/widgets/pull/5"
        assert seen["url"] == "https://api.github.com/repos/octo/widgets/pulls"
        assert seen["headers"]["authorization"] == "Bearer tok"
        assert seen["headers"]["accept"] == "application/vnd.github+json"
        assert seen["headers"]["x-github-api-version"] == "2022-11-28"
        assert seen["headers"]["user-agent"] == "agent-sessions"
        assert seen["body"] == {
            "title": "claude: title",
            "body": "body",
            "head": "claude/branch-1",
            "base": "main",
        }

    def test_api_error_includes_status_and_body(self, make_repo):
        repo = make_repo(origin="https://github.com/octo/widgets.git")

        def handler(request):
            return httpx.Response(422, json={"message": "Validation Failed"})

        with pytest.raises(GitError) as exc_info:
            self.make_client(handler).create_pull_request(repo, "t", "b", "h", "main")
        assert "GitHub API error (422)" in str(exc_info.value)
        assert "Validation Failed" in str(exc_info.value)

    def test_missing_html_url(self, make_repo):
        repo = make_repo(origin="https://github.com/octo/widgets.git")

        def handler(request):
            return httpx.Response(201, json={"number": 5})

        with pytest.raises(GitError, match="No PR URL"):
            self.make_client(handler).create_pull_request(repo, "t", "b", "h", "main")

    def test_transport_failure_is_network_error(self, make_repo):
        repo = make_repo(origin="https://github.com/octo/widgets.git")

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            self.make_client(handler).create_pull_request(repo, "t", "b", "h", "main")

    def test_non_github_remote_fails_before_request(self, make_repo):
        repo = make_repo(origin="https://gitlab.com/octo/widgets.git")
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(201, json={"html_url": "x"})

        with pytest.raises(RemoteParseError):
            self.make_client(handler).create_pull_request(repo, "t", "b", "h", "main")
        assert calls == []

    def test_missing_token(self, make_repo, tmp_path: Path):
        repo = make_repo(origin="https://github.com/octo/widgets.git")
        client = PullRequestClient(
            RunnerConfig(),
            credentials_file=tmp_path / "none.json",
            transport=httpx.MockTransport(lambda r: httpx.Response(201, json={})),
        )
        with patch("agent_sessions.pull_requests.gh_auth_token", return_value=None):
            with pytest.raises(AuthError):
                client.create_pull_request(repo, "t", "b", "h", "main")
