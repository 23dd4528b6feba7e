"""
Unit tests for the infrastructure smoke checks.

HTTP and compose boundaries are mocked; the SSH checks run against the
in-process stub agent.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
import requests

from lab_common.errors import ComposeCommandError
from lab_common.models import CheckResult
from lab_common.settings import LabSettings
from lab_compose.declaration import build_default_declaration, write_declaration
from lab_compose.manager import ComposeManager
from lab_smoke.checks import (
    check_agent_accepts,
    check_agent_rejects_unrelated,
    check_declaration,
    check_fresh_home,
    check_master_http,
    run_smoke,
)


class TestCheckDeclaration:
    """Test suite for check_declaration."""

    def test_valid_file(self, tmp_path):
        path = write_declaration(build_default_declaration(), tmp_path / "c.yml")
        result = check_declaration(path)

        assert result.passed
        assert result.name == "compose-declaration"

    def test_dangling_reference(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("services:\n  a:\n    image: x\n    networks: [ci]\n")
        result = check_declaration(path)

        assert not result.passed
        assert "undeclared network 'ci'" in result.detail

    def test_missing_file(self, tmp_path):
        result = check_declaration(tmp_path / "missing.yml")

        assert not result.passed
        assert "not found" in result.detail

    def test_unparsable_file(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("- not compose\n")

        assert not check_declaration(path).passed


class TestCheckMasterHttp:
    """Test suite for check_master_http."""

    def test_any_response_passes(self):
        """Test that a 403 from a secured Jenkins still counts as reachable."""
        session = Mock()
        session.get.return_value = Mock(status_code=403, headers={"X-Jenkins": "2.462"})

        result = check_master_http("http://localhost:8080", session=session)

        assert result.passed
        assert result.detail == "HTTP 403 from http://localhost:8080 (Jenkins 2.462)"

    def test_retries_until_answer(self):
        """Test that connection errors are retried until the deadline."""
        session = Mock()
        session.get.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            Mock(status_code=200, headers={}),
        ]

        result = check_master_http(
            "http://localhost:8080", timeout=5, interval=0.01, session=session
        )

        assert result.passed
        assert session.get.call_count == 2

    def test_gives_up_after_timeout(self):
        """Test that an unreachable master fails with the last error."""
        session = Mock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        result = check_master_http(
            "http://localhost:8080", timeout=0.05, interval=0.01, session=session
        )

        assert not result.passed
        assert "refused" in result.detail
        assert session.get.call_count >= 1

    def test_own_session_is_closed(self):
        """Test that a session created by the check is closed afterwards."""
        with patch("lab_smoke.checks.requests.Session") as session_class:
            session = session_class.return_value.__enter__.return_value
            session.get.return_value = Mock(status_code=200, headers={})

            result = check_master_http("http://localhost:8080")

        assert result.passed
        session_class.return_value.__exit__.assert_called_once()


class TestAgentChecks:
    """Test suite for the SSH trust checks."""

    def test_accepts_master_key(self, agent_server, master_key):
        result = check_agent_accepts(
            "127.0.0.1", agent_server.port, "jenkins", master_key, timeout=5
        )

        assert result.passed
        assert result.detail.startswith("accepted")

    def test_accept_check_fails_for_stranger(self, agent_server, stranger_key):
        result = check_agent_accepts(
            "127.0.0.1", agent_server.port, "jenkins", stranger_key, timeout=5
        )

        assert not result.passed
        assert result.detail.startswith("refused")

    def test_accept_check_with_missing_key_file(self, tmp_path):
        result = check_agent_accepts("127.0.0.1", 22, "jenkins", tmp_path / "nope")

        assert not result.passed
        assert "cannot load private key" in result.detail

    def test_rejects_unrelated_key(self, agent_server):
        result = check_agent_rejects_unrelated(
            "127.0.0.1", agent_server.port, "jenkins", timeout=5
        )

        assert result.passed

    def test_refused_connection_is_not_a_rejection(self, closed_port):
        """Test that a missing sshd does not pass the rejection check."""
        result = check_agent_rejects_unrelated(
            "127.0.0.1", closed_port, "jenkins", timeout=2
        )

        assert not result.passed
        assert "connection refused" in result.detail


class TestCheckFreshHome:
    """Test suite for check_fresh_home."""

    @pytest.fixture
    def manager(self):
        mgr = AsyncMock()
        mgr.reset = AsyncMock()
        mgr.exec = AsyncMock(return_value=(0, ""))
        return mgr

    @pytest.mark.asyncio
    async def test_empty_home_passes(self, manager):
        result = await check_fresh_home(manager)

        assert result.passed
        manager.reset.assert_awaited_once()
        service, command = manager.exec.call_args.args
        assert service == "jenkins"
        assert "/var/jenkins_home/jobs" in command[-1]

    @pytest.mark.asyncio
    async def test_surviving_jobs_fail(self, manager):
        manager.exec.return_value = (0, "old-job\nanother\n")

        result = await check_fresh_home(manager)

        assert not result.passed
        assert result.detail == "jobs survived reset: old-job, another"

    @pytest.mark.asyncio
    async def test_exec_failure_fails(self, manager):
        manager.exec.return_value = (1, "")

        result = await check_fresh_home(manager)

        assert not result.passed
        assert "exit 1" in result.detail

    @pytest.mark.asyncio
    async def test_reset_failure_fails(self, manager):
        manager.reset.side_effect = ComposeCommandError("down", 1, "daemon not running")

        result = await check_fresh_home(manager)

        assert not result.passed
        assert "daemon not running" in result.detail
        manager.exec.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_docker_cli_fails(self, tmp_path):
        """Test that an absent docker binary fails the check instead of raising."""
        manager = ComposeManager(
            tmp_path / "docker-compose.yml", docker_binary="no-such-docker-binary"
        )

        result = await check_fresh_home(manager)

        assert not result.passed
        assert result.detail.startswith("docker CLI not found")

    @pytest.mark.asyncio
    async def test_exec_missing_docker_cli_fails(self, manager):
        manager.exec.side_effect = FileNotFoundError("docker")

        result = await check_fresh_home(manager)

        assert not result.passed
        assert "docker CLI not found" in result.detail


class TestRunSmoke:
    """Test suite for run_smoke orchestration."""

    @pytest.fixture
    def settings(self, tmp_path):
        write_declaration(build_default_declaration(), tmp_path / "docker-compose.yml")
        return LabSettings(project_dir=tmp_path, db_path=str(tmp_path / "h.db"))

    def _patch_remote_checks(self, passed=True):
        ok = CheckResult(name="x", passed=passed)
        return (
            patch("lab_smoke.checks.check_master_http", return_value=ok),
            patch("lab_smoke.checks.check_agent_accepts", return_value=ok),
            patch("lab_smoke.checks.check_agent_rejects_unrelated", return_value=ok),
        )

    @pytest.mark.asyncio
    async def test_runs_checks_in_order_and_records(self, settings):
        """Test the check sequence and that the run is stored."""
        repository = AsyncMock()
        http, accepts, rejects = self._patch_remote_checks()
        with http as http_mock, accepts as accepts_mock, rejects:
            run = await run_smoke(settings, repository=repository)

        assert len(run.checks) == 4
        assert run.checks[0].name == "compose-declaration"
        assert run.success
        assert run.finished_at is not None
        http_mock.assert_called_once_with(settings.master_url, settings.http_timeout)
        assert accepts_mock.call_args.args[3] == settings.private_key_path
        repository.create_run.assert_awaited_once_with(run)

    @pytest.mark.asyncio
    async def test_reset_is_opt_in(self, settings):
        """Test that the destructive fresh-home check only runs when asked."""
        manager = AsyncMock()
        manager.exec = AsyncMock(return_value=(0, ""))
        http, accepts, rejects = self._patch_remote_checks()
        with http, accepts, rejects:
            without = await run_smoke(settings, manager=manager)
            manager.reset.assert_not_called()

            with_reset = await run_smoke(settings, manager=manager, include_reset=True)

        assert len(without.checks) == 4
        assert [c.name for c in with_reset.checks][:2] == [
            "compose-declaration",
            "fresh-home-after-reset",
        ]
        manager.reset.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_check_fails_run(self, settings):
        http, accepts, rejects = self._patch_remote_checks(passed=False)
        with http, accepts, rejects:
            run = await run_smoke(settings)

        assert not run.success

    @pytest.mark.asyncio
    async def test_reset_without_docker_is_recorded(self, settings):
        """Test that a missing docker CLI fails the run but still records it."""
        repository = AsyncMock()
        manager = ComposeManager(
            settings.compose_path, docker_binary="no-such-docker-binary"
        )
        http, accepts, rejects = self._patch_remote_checks()
        with http, accepts, rejects:
            run = await run_smoke(
                settings, manager=manager, repository=repository, include_reset=True
            )

        assert not run.success
        assert run.checks[1].name == "fresh-home-after-reset"
        assert not run.checks[1].passed
        repository.create_run.assert_awaited_once_with(run)
