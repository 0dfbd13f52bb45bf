"""Tests for the data models."""

from datetime import datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_sessions.errors import InvalidSessionIdError
from agent_sessions.models import (
    InvocationSpec, ProcessResult, RunnerConfig, Session, SessionConfig,
    SessionInfo, SessionStatus, check_session_id,
)


def make_session(session_id: str = "s1") -> Session:
    return Session.new(
        id=session_id,
        git_directory="/tmp/repo",
        instructions="Fix the bug",
        work_dir=Path("/tmp/checkouts/session-s1"),
        branch_name="claude/fix-the-bug-1",
    )


class TestSessionStatus:
    def test_terminal_states(self):
        assert SessionStatus.COMPLETED.is_terminal
        assert SessionStatus.ERROR.is_terminal
        assert not SessionStatus.INITIALIZING.is_terminal
        assert not SessionStatus.WORKING.is_terminal

    def test_wire_values_are_lowercase(self):
        assert [s.value for s in SessionStatus] == [
            "initializing", "working", "completed", "error"
        ]


class TestSession:
    def test_new_session_is_initializing(self):
        session = make_session()
        assert session.status == SessionStatus.INITIALIZING
        assert session.process_id is None
        assert session.info.pr_url is None
        assert session.info.error_message is None
        assert isinstance(session.info.created_at, datetime)

    def test_set_working_records_pid(self):
        session = make_session()
        session.set_working(4242)
        assert session.status == SessionStatus.WORKING
        assert session.process_id == 4242

    def test_set_completed_clears_pid(self):
        session = make_session()
        session.set_working(4242)
        session.set_completed("https://github.com/o/r/pull/1")
        assert session.status == SessionStatus.COMPLETED
        assert session.info.pr_url == "https://github.com/o/r/pull/1"
        assert session.info.error_message is None
        assert session.process_id is None
        assert session.is_terminal

    def test_set_error_clears_pid_and_url(self):
        session = make_session()
        session.set_working(4242)
        session.set_error("boom")
        assert session.status == SessionStatus.ERROR
        assert session.info.error_message == "boom"
        assert session.info.pr_url is None
        assert session.process_id is None


class TestSessionInfo:
    def test_json_round_trip_keeps_status(self):
        info = make_session().info
        info.status = SessionStatus.ERROR
        info.error_message = "failed"

        restored = SessionInfo.model_validate_json(info.model_dump_json())
        assert restored == info
        assert '"error"' in info.model_dump_json()


class TestSessionConfig:
    def test_defaults(self):
        config = SessionConfig(session_id="s", git_directory="/r", user_instructions="x")
        assert config.base_branch == "main"
        assert config.additional_instructions is None
        assert config.instructions_file_content is None

    @pytest.mark.parametrize("session_id", ["abc", "a1b2c3d4", "run-2.final_v1", "..."])
    def test_path_safe_ids_accepted(self, session_id):
        config = SessionConfig(session_id=session_id, git_directory="/r", user_instructions="x")
        assert config.session_id == session_id

    @pytest.mark.parametrize("session_id", [
        "../credentials", "..", ".", "", "a/b", "a\\b", "with space", "/abs", "caf\u00e9",
    ])
    def test_ids_that_escape_or_break_paths_rejected(self, session_id):
        with pytest.raises(ValidationError):
            SessionConfig(session_id=session_id, git_directory="/r", user_instructions="x")
        with pytest.raises(InvalidSessionIdError):
            check_session_id(session_id)


class TestProcessModels:
    def test_invocation_spec_splits_program_and_args(self):
        spec = InvocationSpec(argv=["claude", "--print", "task"], cwd=Path("/w"))
        assert spec.program == "claude"
        assert spec.args == ["--print", "task"]
        assert spec.capture_output

    def test_process_result_success(self):
        assert ProcessResult(returncode=0).success
        assert not ProcessResult(returncode=1).success
        assert not ProcessResult(returncode=None).success


class TestRunnerConfig:
    def test_defaults(self):
        config = RunnerConfig()
        assert config.agent_executable == "claude"
        assert config.allowed_tools == ["Edit", "Write", "Read", "Bash"]
        assert "pytest" in config.allowed_commands
        assert config.branch_prefix == "claude"
        assert config.branch_slug_max_length == 30
        assert config.fallback_author_name == "Claude"
        assert config.github_api_version == "2022-11-28"

    def test_partial_override(self):
        config = RunnerConfig.model_validate({"branch_prefix": "bot", "lock_timeout_seconds": 1})
        assert config.branch_prefix == "bot"
        assert config.lock_timeout_seconds == 1.0
        assert config.agent_executable == "claude"
