"""
Operator CLI for the Jenkins lab environment.

Provides commands to bootstrap the project files, validate the compose
declaration, manage the agent keypair, drive docker compose, probe SSH
trust, and run and review infrastructure smoke checks.
"""

import asyncio
import json
import logging
import sys

import click
import paramiko

from lab_common.errors import ComposeValidationError, LabError
from lab_common.settings import LabSettings
from lab_compose.declaration import load_declaration, validate_declaration
from lab_compose.manager import ComposeManager
from lab_persistence.sqlite_repository import SQLiteRunRepository
from lab_smoke.checks import run_smoke
from lab_trust.keys import describe_keypair, generate_keypair
from lab_trust.probe import DEFAULT_PROBE_COMMAND, probe_trust

from .bootstrap import check_trust_files, init_project, sync_authorized_key

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def get_manager(settings: LabSettings) -> ComposeManager:
    """Get the compose manager for the configured project."""
    return ComposeManager(settings.compose_path, project_name=settings.compose_project)


def get_repository(settings: LabSettings) -> SQLiteRunRepository:
    """Get the smoke-run history repository."""
    return SQLiteRunRepository(settings.db_path)


def run_compose(coro) -> None:
    """Run a compose operation, reporting tool failures as CLI errors."""
    try:
        run_async(coro)
    except LabError as e:
        fail(str(e))
    except FileNotFoundError as e:
        fail(f"docker CLI not found: {e}")


@click.group()
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Lab project directory (default: LAB_PROJECT_DIR env or cwd)",
)
@click.option(
    "--compose-project",
    default=None,
    help="Compose project name (default: LAB_COMPOSE_PROJECT env or jenkins-lab)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default="WARNING",
    show_default=True,
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, project_dir: str | None, compose_project: str | None, log_level: str):
    """Jenkins Lab - bootstrap, run and smoke-test the Jenkins environment."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.obj = LabSettings.from_env(
        project_dir=project_dir, compose_project=compose_project
    )


# ============================================================================
# Project Commands
# ============================================================================


@cli.command("init")
@click.option("--force", is_flag=True, help="Regenerate keys, password and files")
@click.option("--bits", type=int, default=4096, show_default=True, help="RSA key size for a new keypair")
@click.pass_obj
def init(settings: LabSettings, force: bool, bits: int):
    """Create the compose file, agent build context, keypair and .env."""
    try:
        result = init_project(settings, force=force, key_bits=bits)
    except (LabError, OSError, ValueError, paramiko.SSHException) as e:
        fail(str(e))

    click.echo(f"✓ Lab project ready in {settings.project_dir}")
    for path in result.created:
        click.echo(f"  created {path}")
    click.echo(f"\n  Agent key:   {result.keypair.fingerprint}")
    click.echo(f"  Private key: {result.keypair.private_key_path}")
    click.echo(
        "\n  Add the private key to Jenkins as an 'SSH Username with private key'"
    )
    click.echo(f"  credential for user '{settings.agent_user}', then run: jenkins-lab up --build")


@cli.command("validate")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def validate(settings: LabSettings, json_output: bool):
    """Validate the compose declaration."""
    path = settings.compose_path
    try:
        problems = validate_declaration(load_declaration(path))
    except FileNotFoundError:
        problems = [f"{path} not found"]
    except ComposeValidationError as e:
        problems = e.problems

    if json_output:
        click.echo(json.dumps({"file": str(path), "valid": not problems, "problems": problems}, indent=2))
    elif problems:
        click.echo(f"✗ {path} is invalid:", err=True)
        for problem in problems:
            click.echo(f"  - {problem}", err=True)
    else:
        click.echo(f"✓ {path} is valid")

    if problems:
        sys.exit(1)


# ============================================================================
# Key Commands
# ============================================================================


@cli.group()
def keys():
    """Manage the master-to-agent SSH keypair."""
    pass


@keys.command("generate")
@click.option("--force", is_flag=True, help="Replace an existing keypair")
@click.option("--bits", type=int, default=4096, show_default=True, help="RSA key size")
@click.pass_obj
def keys_generate(settings: LabSettings, force: bool, bits: int):
    """Generate the keypair and install the public half in the agent context."""
    try:
        keypair = generate_keypair(
            settings.private_key_path.parent,
            name=settings.private_key_path.name,
            bits=bits,
            overwrite=force,
        )
    except FileExistsError as e:
        fail(f"{e} (use --force to replace it)")

    sync_authorized_key(settings)
    click.echo("✓ Keypair generated")
    click.echo(f"  Fingerprint: {keypair.fingerprint}")
    click.echo(f"  Private key: {keypair.private_key_path}")
    click.echo(f"  Public key:  {keypair.public_key_path}")
    click.echo("\n  Rebuild the agent image to install the new key: jenkins-lab up --build")


@keys.command("check")
@click.pass_obj
def keys_check(settings: LabSettings):
    """Check that the private key matches both public key copies."""
    try:
        problems = check_trust_files(settings)
    except paramiko.SSHException as e:
        problems = [str(e)]

    if problems:
        for problem in problems:
            click.echo(f"✗ {problem}", err=True)
        sys.exit(1)
    click.echo("✓ Private key matches the public key and the agent's authorized key")


@keys.command("fingerprint")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def keys_fingerprint(settings: LabSettings, json_output: bool):
    """Show the keypair's type and fingerprint."""
    try:
        keypair = describe_keypair(settings.private_key_path, settings.public_key_path)
    except (LabError, FileNotFoundError, ValueError, paramiko.SSHException) as e:
        fail(str(e))

    if json_output:
        click.echo(json.dumps(keypair.to_dict(), indent=2))
    else:
        click.echo(f"{keypair.key_type} {keypair.fingerprint} {keypair.comment}".rstrip())


# ============================================================================
# Compose Commands
# ============================================================================


@cli.command("up")
@click.option("--build", is_flag=True, help="Rebuild the agent image first")
@click.argument("services", nargs=-1)
@click.pass_obj
def up(settings: LabSettings, build: bool, services: tuple[str, ...]):
    """Start the environment in the background."""
    run_compose(get_manager(settings).up(build=build, services=services))
    click.echo(f"✓ Environment up; Jenkins at {settings.master_url}")


@cli.command("ps")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def ps(settings: LabSettings, json_output: bool):
    """Show the state of the environment's containers."""

    async def list_services():
        return await get_manager(settings).ps()

    try:
        statuses = run_async(list_services())
    except (LabError, RuntimeError) as e:
        fail(str(e))

    if json_output:
        click.echo(json.dumps([s.to_dict() for s in statuses], indent=2))
        return

    if not statuses:
        click.echo("No containers found.")
        return

    click.echo(f"\n{'Service':<12} {'Container':<20} {'State':<12} {'Ports':<40}")
    click.echo("-" * 84)
    for s in statuses:
        click.echo(f"{s.service:<12} {s.name:<20} {s.state:<12} {', '.join(s.ports):<40}")
    click.echo()


@cli.command("logs")
@click.argument("services", nargs=-1)
@click.option("--follow", "-f", is_flag=True, help="Keep streaming new output")
@click.option("--tail", type=int, default=None, help="Lines to show from the end")
@click.pass_obj
def logs(settings: LabSettings, services: tuple[str, ...], follow: bool, tail: int | None):
    """Show service logs."""

    async def stream():
        async for line in get_manager(settings).logs(services, follow=follow, tail=tail):
            click.echo(line, nl=False)

    try:
        run_async(stream())
    except KeyboardInterrupt:
        pass


@cli.command("down")
@click.option("--volumes", "-v", is_flag=True, help="Also remove the Jenkins home volume")
@click.pass_obj
def down(settings: LabSettings, volumes: bool):
    """Stop and remove the environment."""
    run_compose(get_manager(settings).down(volumes=volumes))
    click.echo("✓ Environment down" + (" (volumes removed)" if volumes else ""))


@cli.command("restart")
@click.argument("services", nargs=-1)
@click.pass_obj
def restart(settings: LabSettings, services: tuple[str, ...]):
    """Restart services (all if none given)."""
    run_compose(get_manager(settings).restart(services))
    click.echo("✓ Restarted " + (", ".join(services) if services else "all services"))


@cli.command("reset")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def reset(settings: LabSettings, yes: bool):
    """Tear down with volumes and start fresh (discards all Jenkins state)."""
    if not yes:
        click.confirm("This deletes the Jenkins home volume. Continue?", abort=True)
    run_compose(get_manager(settings).reset())
    click.echo("✓ Environment recreated with an empty Jenkins home")


# ============================================================================
# Trust and Smoke Commands
# ============================================================================


@cli.command("probe")
@click.option("--key", "key_path", type=click.Path(dir_okay=False), default=None, help="Private key to try (default: the lab key)")
@click.option("--command", default=DEFAULT_PROBE_COMMAND, show_default=True, help="Command to run on the agent")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def probe(settings: LabSettings, key_path: str | None, command: str, json_output: bool):
    """Try to log in to the agent over SSH with a key."""
    try:
        result = probe_trust(
            settings.agent_host,
            settings.agent_port,
            settings.agent_user,
            key_path or settings.private_key_path,
            timeout=settings.ssh_timeout,
            command=command,
        )
    except (FileNotFoundError, paramiko.SSHException) as e:
        fail(str(e))

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        mark = "✓" if result.accepted else "✗"
        click.echo(
            f"{mark} {result.username}@{result.host}:{result.port} {result.outcome}: {result.detail}"
        )

    if not result.accepted:
        sys.exit(1)


@cli.command("smoke")
@click.option("--reset", "include_reset", is_flag=True, help="Also check that a volume-deleted restart gives a fresh Jenkins home (destructive)")
@click.option("--no-record", is_flag=True, help="Do not store the run in history")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def smoke(settings: LabSettings, include_reset: bool, no_record: bool, json_output: bool):
    """Run the infrastructure smoke checks."""

    async def run():
        repo = None if no_record else get_repository(settings)
        if repo is not None:
            await repo.initialize()
        try:
            return await run_smoke(
                settings,
                manager=get_manager(settings),
                repository=repo,
                include_reset=include_reset,
            )
        finally:
            if repo is not None:
                await repo.close()

    try:
        smoke_run = run_async(run())
    except LabError as e:
        fail(str(e))
    except FileNotFoundError as e:
        fail(f"docker CLI not found: {e}")

    if json_output:
        click.echo(json.dumps(smoke_run.to_dict(), indent=2))
    else:
        for check in smoke_run.checks:
            mark = "✓" if check.passed else "✗"
            click.echo(f"{mark} {check.name:<30} {check.detail}")
        click.echo(f"\nRun {smoke_run.id}: {'PASSED' if smoke_run.success else 'FAILED'}")

    if not smoke_run.success:
        sys.exit(1)


@cli.group()
def history():
    """Review recorded smoke runs."""
    pass


@history.command("list")
@click.option("--limit", type=int, default=20, show_default=True, help="Number of runs to show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def history_list(settings: LabSettings, limit: int, json_output: bool):
    """List recent smoke runs."""

    async def list_runs():
        repo = get_repository(settings)
        await repo.initialize()
        try:
            return await repo.list_runs(limit=limit)
        finally:
            await repo.close()

    runs = run_async(list_runs())

    if json_output:
        click.echo(json.dumps([r.to_summary_dict() for r in runs], indent=2))
        return

    if not runs:
        click.echo("No smoke runs recorded.")
        return

    click.echo(f"\n{'Run ID':<38} {'Started':<27} {'Checks':<8} {'Result':<8}")
    click.echo("-" * 84)
    for r in runs:
        summary = r.to_summary_dict()
        checks = f"{summary['passed']}/{summary['total']}"
        result = "PASSED" if r.success else "FAILED"
        click.echo(f"{r.id:<38} {r.started_at.isoformat():<27} {checks:<8} {result:<8}")
    click.echo()


@history.command("show")
@click.argument("run_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_obj
def history_show(settings: LabSettings, run_id: str, json_output: bool):
    """Show the checks of one smoke run."""

    async def get_run():
        repo = get_repository(settings)
        await repo.initialize()
        try:
            return await repo.get_run(run_id)
        finally:
            await repo.close()

    smoke_run = run_async(get_run())
    if smoke_run is None:
        fail(f"Smoke run not found: {run_id}")

    if json_output:
        click.echo(json.dumps(smoke_run.to_dict(), indent=2))
        return

    click.echo(f"\nRun {smoke_run.id}")
    click.echo(f"  Started:  {smoke_run.started_at.isoformat()}")
    if smoke_run.finished_at:
        click.echo(f"  Finished: {smoke_run.finished_at.isoformat()}")
    click.echo(f"  Result:   {'PASSED' if smoke_run.success else 'FAILED'}\n")
    for check in smoke_run.checks:
        mark = "✓" if check.passed else "✗"
        click.echo(f"  {mark} {check.name:<30} {check.detail}")
    click.echo()


if __name__ == "__main__":
    cli()
