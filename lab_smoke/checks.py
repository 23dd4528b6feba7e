"""
Infrastructure smoke checks for a running lab environment.

These are configuration-validity and reachability checks, not unit tests of
an algorithm:

1. the compose declaration parses and has no dangling references
2. (optional) a volume-deleted restart yields an empty Jenkins home
3. the master's HTTP port answers
4. the agent accepts the master's key
5. the agent rejects an unrelated key

Each check reports its result in a CheckResult instead of raising.
"""

import asyncio
import logging
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path

import paramiko
import requests

from lab_common.errors import ComposeCommandError, ComposeValidationError
from lab_common.models import CheckResult, SmokeRun
from lab_common.settings import LabSettings
from lab_compose.declaration import (
    JENKINS_HOME,
    MASTER_SERVICE,
    load_declaration,
    validate_declaration,
)
from lab_compose.manager import ComposeManager
from lab_persistence.repository import RunRepository
from lab_trust.probe import DEFAULT_PROBE_COMMAND, probe_trust

logger = logging.getLogger(__name__)

UNRELATED_KEY_BITS = 2048


def check_declaration(path: str | Path) -> CheckResult:
    """Check that the compose file parses and references only what it declares."""
    start = time.monotonic()
    try:
        problems = validate_declaration(load_declaration(path))
    except FileNotFoundError:
        problems = [f"{path} not found"]
    except ComposeValidationError as e:
        problems = e.problems

    return CheckResult(
        name="compose-declaration",
        passed=not problems,
        detail="; ".join(problems) if problems else f"{path} is valid",
        duration_seconds=time.monotonic() - start,
    )


def check_master_http(
    url: str,
    timeout: float = 120.0,
    interval: float = 2.0,
    session: requests.Session | None = None,
) -> CheckResult:
    """
    Poll the master's URL until it returns any HTTP response.

    A secured Jenkins answers 403 to anonymous requests; that still proves
    the port is bound and the web container is serving.

    Args:
        url: Master URL
        timeout: Total seconds to keep polling
        interval: Seconds between attempts
        session: Optional requests session (for connection reuse or testing)

    Returns:
        CheckResult with the HTTP status or the last connection error
    """
    if session is None:
        with requests.Session() as own_session:
            return check_master_http(url, timeout, interval, session=own_session)

    start = time.monotonic()
    deadline = start + timeout
    last_error = "no attempt made"

    while True:
        try:
            response = session.get(url, timeout=min(10.0, timeout), allow_redirects=False)
            version = response.headers.get("X-Jenkins", "")
            detail = f"HTTP {response.status_code} from {url}"
            if version:
                detail += f" (Jenkins {version})"
            return CheckResult(
                name="master-http",
                passed=True,
                detail=detail,
                duration_seconds=time.monotonic() - start,
            )
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            logger.debug(f"Master not answering yet: {e}")

        if time.monotonic() + interval > deadline:
            break
        time.sleep(interval)

    return CheckResult(
        name="master-http",
        passed=False,
        detail=f"no HTTP response from {url} within {timeout}s: {last_error}",
        duration_seconds=time.monotonic() - start,
    )


def check_agent_accepts(
    host: str,
    port: int,
    username: str,
    private_key: paramiko.PKey | str | Path,
    timeout: float = 10.0,
) -> CheckResult:
    """Check that the master's key gets a working non-interactive shell."""
    start = time.monotonic()
    try:
        probe = probe_trust(
            host, port, username, private_key, timeout, command=DEFAULT_PROBE_COMMAND
        )
    except (FileNotFoundError, paramiko.SSHException) as e:
        return CheckResult(
            name="agent-accepts-master-key",
            passed=False,
            detail=f"cannot load private key: {e}",
            duration_seconds=time.monotonic() - start,
        )

    passed = probe.accepted and probe.exit_status == 0
    return CheckResult(
        name="agent-accepts-master-key",
        passed=passed,
        detail=f"{probe.outcome}: {probe.detail}",
        duration_seconds=time.monotonic() - start,
    )


def check_agent_rejects_unrelated(
    host: str, port: int, username: str, timeout: float = 10.0
) -> CheckResult:
    """
    Check that a freshly generated, unrelated key is refused.

    Only an authentication failure counts: a refused connection would mean
    sshd is not listening, which proves nothing about key trust.
    """
    start = time.monotonic()
    stranger = paramiko.RSAKey.generate(UNRELATED_KEY_BITS)
    probe = probe_trust(host, port, username, stranger, timeout)

    passed = probe.reason == "auth_failed"
    return CheckResult(
        name="agent-rejects-unrelated-key",
        passed=passed,
        detail=f"{probe.outcome}: {probe.detail}",
        duration_seconds=time.monotonic() - start,
    )


async def check_fresh_home(manager: ComposeManager, build: bool = False) -> CheckResult:
    """
    Tear down with volumes, start again, and check the Jenkins home is empty.

    The jobs directory must be missing or empty; anything in it means state
    survived the volume removal.
    """
    start = time.monotonic()
    try:
        await manager.reset(build=build)
        exit_code, stdout = await manager.exec(
            MASTER_SERVICE,
            ["sh", "-c", f"ls -A {JENKINS_HOME}/jobs 2>/dev/null || true"],
        )
    except ComposeCommandError as e:
        return CheckResult(
            name="fresh-home-after-reset",
            passed=False,
            detail=str(e),
            duration_seconds=time.monotonic() - start,
        )
    except FileNotFoundError as e:
        return CheckResult(
            name="fresh-home-after-reset",
            passed=False,
            detail=f"docker CLI not found: {e}",
            duration_seconds=time.monotonic() - start,
        )

    leftovers = stdout.split()
    if exit_code != 0:
        passed = False
        detail = f"could not inspect {JENKINS_HOME} (exit {exit_code})"
    elif leftovers:
        passed = False
        detail = f"jobs survived reset: {', '.join(leftovers)}"
    else:
        passed = True
        detail = f"{JENKINS_HOME}/jobs is empty"

    return CheckResult(
        name="fresh-home-after-reset",
        passed=passed,
        detail=detail,
        duration_seconds=time.monotonic() - start,
    )


async def run_smoke(
    settings: LabSettings,
    manager: ComposeManager | None = None,
    repository: RunRepository | None = None,
    include_reset: bool = False,
) -> SmokeRun:
    """
    Run all smoke checks in order and optionally record the run.

    Args:
        settings: Resolved lab settings
        manager: Compose manager (built from settings if None)
        repository: History store to record the run in (not recorded if None)
        include_reset: Also run the destructive fresh-home check

    Returns:
        The completed SmokeRun
    """
    run = SmokeRun(id=str(uuid.uuid4()), started_at=datetime.now(UTC))
    logger.info(f"Starting smoke run {run.id}")

    run.checks.append(check_declaration(settings.compose_path))

    if include_reset:
        manager = manager or ComposeManager(
            settings.compose_path, project_name=settings.compose_project
        )
        run.checks.append(await check_fresh_home(manager))

    run.checks.append(
        await asyncio.to_thread(
            check_master_http, settings.master_url, settings.http_timeout
        )
    )
    run.checks.append(
        await asyncio.to_thread(
            check_agent_accepts,
            settings.agent_host,
            settings.agent_port,
            settings.agent_user,
            settings.private_key_path,
            settings.ssh_timeout,
        )
    )
    run.checks.append(
        await asyncio.to_thread(
            check_agent_rejects_unrelated,
            settings.agent_host,
            settings.agent_port,
            settings.agent_user,
            settings.ssh_timeout,
        )
    )

    run.finished_at = datetime.now(UTC)
    for check in run.checks:
        level = logging.INFO if check.passed else logging.WARNING
        logger.log(level, f"  {check.name}: {'ok' if check.passed else 'FAILED'}")

    if repository is not None:
        await repository.create_run(run)
        logger.info(f"Recorded smoke run {run.id}")

    return run
