"""Tests for SessionRegistry."""

import threading
from pathlib import Path

import pytest

from agent_sessions.errors import LockError, SessionAlreadyExistsError, SessionNotFoundError
from agent_sessions.models import SessionStatus
from agent_sessions.registry import SessionRegistry


def create(registry: SessionRegistry, session_id: str = "s1"):
    return registry.create(
        session_id,
        git_directory="/tmp/repo",
        instructions="Add a feature",
        work_dir=Path(f"/tmp/checkouts/session-{session_id}"),
        branch_name=f"claude/add-a-feature-{session_id}",
    )


class TestCreateAndLookup:
    def test_create_returns_initializing_info(self):
        registry = SessionRegistry()
        info = create(registry)
        assert info.id == "s1"
        assert info.status == SessionStatus.INITIALIZING
        assert info.branch_name == "claude/add-a-feature-s1"
        assert "s1" in registry
        assert len(registry) == 1

    def test_duplicate_id_rejected(self):
        registry = SessionRegistry()
        create(registry)
        with pytest.raises(SessionAlreadyExistsError):
            create(registry)

    def test_unknown_id_raises_not_found(self):
        registry = SessionRegistry()
        with pytest.raises(SessionNotFoundError):
            registry.get_info("missing")
        with pytest.raises(SessionNotFoundError):
            registry.set_working("missing", 1)
        with pytest.raises(SessionNotFoundError):
            registry.remove("missing")

    def test_accessors(self):
        registry = SessionRegistry()
        create(registry)
        assert registry.get_process_id("s1") is None
        assert registry.get_work_dir("s1") == Path("/tmp/checkouts/session-s1")
        assert registry.get_branch_name("s1") == "claude/add-a-feature-s1"

    def test_returned_info_is_a_copy(self):
        """Test that mutating a returned record does not touch the registry."""
        registry = SessionRegistry()
        info = create(registry)
        info.status = SessionStatus.COMPLETED
        assert registry.get_info("s1").status == SessionStatus.INITIALIZING

    def test_snapshot_has_consistent_pid_and_work_dir(self):
        registry = SessionRegistry()
        create(registry)
        registry.set_working("s1", 99)
        snapshot = registry.get_snapshot("s1")
        assert snapshot.process_id == 99
        assert snapshot.work_dir == Path("/tmp/checkouts/session-s1")


class TestTransitions:
    def test_working_then_completed(self):
        registry = SessionRegistry()
        create(registry)
        info = registry.set_working("s1", 1234)
        assert info.status == SessionStatus.WORKING
        assert registry.get_process_id("s1") == 1234

        info = registry.set_completed("s1", "https://github.com/o/r/pull/7")
        assert info.status == SessionStatus.COMPLETED
        assert info.pr_url == "https://github.com/o/r/pull/7"
        assert registry.get_process_id("s1") is None

    def test_error_from_any_non_terminal_state(self):
        registry = SessionRegistry()
        create(registry, "a")
        create(registry, "b")
        registry.set_working("b", 5)

        assert registry.set_error("a", "x").status == SessionStatus.ERROR
        assert registry.set_error("b", "y").error_message == "y"
        assert registry.get_process_id("b") is None

    def test_terminal_state_is_not_overwritten(self):
        """Test that the first terminal write wins."""
        registry = SessionRegistry()
        create(registry)
        registry.set_error("s1", "cancelled by caller")

        info = registry.set_completed("s1", "https://github.com/o/r/pull/1")
        assert info.status == SessionStatus.ERROR
        assert info.error_message == "cancelled by caller"
        assert info.pr_url is None

        info = registry.set_working("s1", 77)
        assert info.status == SessionStatus.ERROR
        assert registry.get_process_id("s1") is None

    def test_completed_is_not_turned_into_error(self):
        registry = SessionRegistry()
        create(registry)
        registry.set_completed("s1", "https://github.com/o/r/pull/1")
        info = registry.set_error("s1", "late failure")
        assert info.status == SessionStatus.COMPLETED
        assert info.error_message is None
        assert registry.is_terminal("s1")


class TestRemovalAndListing:
    def test_remove_returns_record(self):
        registry = SessionRegistry()
        create(registry)
        removed = registry.remove("s1")
        assert removed.info.id == "s1"
        assert "s1" not in registry
        with pytest.raises(SessionNotFoundError):
            registry.get_info("s1")

    def test_list_and_list_active(self):
        registry = SessionRegistry()
        for sid in ("a", "b", "c", "d"):
            create(registry, sid)
        registry.set_working("b", 1)
        registry.set_completed("c", "https://github.com/o/r/pull/1")
        registry.set_error("d", "failed")

        assert {i.id for i in registry.list()} == {"a", "b", "c", "d"}
        assert {i.id for i in registry.list_active()} == {"a", "b"}


class TestLocking:
    def test_lock_timeout_raises_lock_error(self):
        registry = SessionRegistry(lock_timeout=0.05)
        create(registry)
        registry._lock.acquire()
        try:
            with pytest.raises(LockError):
                registry.get_info("s1")
        finally:
            registry._lock.release()
        assert registry.get_info("s1").id == "s1"

    def test_concurrent_creates_keep_every_session(self):
        registry = SessionRegistry()
        errors = []

        def worker(n: int):
            try:
                create(registry, f"s{n}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(registry) == 50

    def test_only_one_terminal_write_wins_under_contention(self):
        registry = SessionRegistry()
        create(registry)
        registry.set_working("s1", 10)
        results = []

        def complete():
            results.append(registry.set_completed("s1", "https://github.com/o/r/pull/2"))

        def fail():
            results.append(registry.set_error("s1", "cancelled by caller"))

        threads = [threading.Thread(target=complete), threading.Thread(target=fail)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = registry.get_info("s1")
        assert all(r.status == final.status for r in results)
        if final.status == SessionStatus.COMPLETED:
            assert final.error_message is None
        else:
            assert final.pr_url is None
