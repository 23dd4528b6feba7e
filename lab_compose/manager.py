"""
Compose manager for driving the lab environment through docker compose.

This module wraps the operator-facing docker compose subcommands (up, ps,
logs, down, restart, exec) behind an async interface. Orchestration itself
is left to Docker: this class only invokes the CLI and reports what it says.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from lab_common.errors import ComposeCommandError

logger = logging.getLogger(__name__)


@dataclass
class ServiceStatus:
    """
    State of one compose service container, as reported by `docker compose ps`.
    """

    name: str  # Container name
    service: str  # Service name from the declaration
    state: str  # "running", "exited", "restarting", ...
    status: str = ""  # Human-readable status ("Up 3 minutes")
    health: str = ""
    exit_code: int | None = None
    ports: list[str] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return self.state == "running"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "service": self.service,
            "state": self.state,
            "status": self.status,
            "health": self.health,
            "exit_code": self.exit_code,
            "ports": list(self.ports),
        }


def _publishers_to_ports(publishers: list[dict] | None) -> list[str]:
    ports = []
    for pub in publishers or []:
        published = pub.get("PublishedPort") or 0
        target = pub.get("TargetPort")
        protocol = pub.get("Protocol", "tcp")
        if published:
            url = pub.get("URL") or "0.0.0.0"
            ports.append(f"{url}:{published}->{target}/{protocol}")
        elif target:
            ports.append(f"{target}/{protocol}")
    return ports


def parse_ps_output(output: str) -> list[ServiceStatus]:
    """
    Parse `docker compose ps --format json` output.

    Older compose releases print a single JSON array; newer ones print one
    JSON object per line. Both are accepted.

    Args:
        output: Raw stdout of the ps command

    Returns:
        List of ServiceStatus entries

    Raises:
        ValueError: If the output is not valid JSON in either form
    """
    text = output.strip()
    if not text:
        return []

    if text.startswith("["):
        entries = json.loads(text)
    else:
        entries = [json.loads(line) for line in text.splitlines() if line.strip()]

    statuses = []
    for entry in entries:
        exit_code = entry.get("ExitCode")
        statuses.append(
            ServiceStatus(
                name=entry.get("Name", ""),
                service=entry.get("Service", ""),
                state=str(entry.get("State", "")).lower(),
                status=entry.get("Status", ""),
                health=entry.get("Health", ""),
                exit_code=int(exit_code) if exit_code is not None else None,
                ports=_publishers_to_ports(entry.get("Publishers")),
            )
        )
    return statuses


class ComposeManager:
    """
    Runs docker compose subcommands against one compose project.

    Every subcommand is run with the project's compose file and project name,
    from the project directory so compose picks up its .env file.
    """

    def __init__(
        self,
        compose_file: str | Path,
        project_name: str = "jenkins-lab",
        docker_binary: str = "docker",
    ):
        """
        Initialize the compose manager.

        Args:
            compose_file: Path to the compose declaration
            project_name: Compose project name (namespaces containers,
                          networks and volumes)
            docker_binary: Docker CLI executable
        """
        self.compose_file = Path(compose_file).expanduser().resolve()
        self.project_name = project_name
        self.docker_binary = docker_binary

    @property
    def project_dir(self) -> Path:
        return self.compose_file.parent

    def _base_args(self) -> list[str]:
        return [
            self.docker_binary,
            "compose",
            "-f",
            str(self.compose_file),
            "-p",
            self.project_name,
        ]

    async def _run(self, *args: str, check: bool = True) -> tuple[int, str, str]:
        """
        Run a compose subcommand and capture its output.

        Args:
            args: Subcommand and its arguments
            check: Raise ComposeCommandError on non-zero exit

        Returns:
            Tuple of (returncode, stdout, stderr)
        """
        cmd = [*self._base_args(), *args]
        logger.debug(f"Running: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self.project_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        returncode = process.returncode if process.returncode is not None else -1

        if check and returncode != 0:
            raise ComposeCommandError(args[0], returncode, stderr.decode())

        return returncode, stdout.decode(), stderr.decode()

    async def up(
        self, detach: bool = True, build: bool = False, services: Sequence[str] = ()
    ) -> None:
        """
        Create and start the environment (`docker compose up`).

        Args:
            detach: Run containers in the background
            build: Rebuild images before starting
            services: Limit to these services (all if empty)

        Raises:
            ComposeCommandError: If compose fails (pull, build, port conflict, ...)
        """
        args = ["up"]
        if detach:
            args.append("-d")
        if build:
            args.append("--build")
        args.extend(services)
        await self._run(*args)
        logger.info(f"Compose project {self.project_name} is up")

    async def ps(self) -> list[ServiceStatus]:
        """
        List the project's containers, including stopped ones.

        Returns:
            List of ServiceStatus entries

        Raises:
            ComposeCommandError: If compose fails
            RuntimeError: If the output cannot be parsed
        """
        _, stdout, _ = await self._run("ps", "--all", "--format", "json")
        try:
            return parse_ps_output(stdout)
        except (json.JSONDecodeError, ValueError) as e:
            raise RuntimeError(f"Failed to parse compose ps output: {e}") from e

    async def logs(
        self,
        services: Sequence[str] = (),
        follow: bool = False,
        tail: int | None = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream service logs.

        Args:
            services: Limit to these services (all if empty)
            follow: Keep streaming until the generator is closed
            tail: Only show the last N lines per service

        Yields:
            Log lines as strings
        """
        args = [*self._base_args(), "logs", "--no-color"]
        if follow:
            args.append("--follow")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.extend(services)

        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(self.project_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        assert process.stdout is not None

        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                yield line.decode()
        finally:
            # Clean up process if still running
            if process.returncode is None:
                process.terminate()
                await process.wait()

    async def down(self, volumes: bool = False) -> None:
        """
        Stop and remove the project's containers and network.

        Args:
            volumes: Also remove named volumes (discards the Jenkins home)

        Raises:
            ComposeCommandError: If compose fails
        """
        args = ["down"]
        if volumes:
            args.append("--volumes")
        await self._run(*args)
        logger.info(
            f"Compose project {self.project_name} is down"
            + (" (volumes removed)" if volumes else "")
        )

    async def restart(self, services: Sequence[str] = ()) -> None:
        """Restart services (all if empty)."""
        await self._run("restart", *services)

    async def exec(self, service: str, command: Sequence[str]) -> tuple[int, str]:
        """
        Run a command inside a running service container.

        A non-zero exit status of the command is returned, not raised.

        Args:
            service: Service name
            command: Command and arguments

        Returns:
            Tuple of (exit_code, stdout)
        """
        returncode, stdout, stderr = await self._run(
            "exec", "-T", service, *command, check=False
        )
        if returncode != 0:
            logger.debug(f"exec in {service} exited {returncode}: {stderr.strip()}")
        return returncode, stdout

    async def reset(self, build: bool = False) -> None:
        """
        Tear down with volumes and start again.

        The result has a fresh Jenkins home: no state survives the volume
        removal.
        """
        await self.down(volumes=True)
        await self.up(build=build)
