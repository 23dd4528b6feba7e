"""
Compose declaration loading, validation and rendering.

The declaration is read once per operation and never mutated at runtime.
Validation catches the mistakes docker compose would otherwise only report
at `up` time: dangling network, volume and service references, services
without an image, and host port collisions.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from lab_common.errors import ComposeValidationError
from lab_common.models import ComposeDeclaration, PortBinding, ServiceSpec, VolumeMount

logger = logging.getLogger(__name__)

MASTER_SERVICE = "jenkins"
AGENT_SERVICE = "agent"
MASTER_IMAGE = "jenkins/jenkins:lts"
JENKINS_HOME = "/var/jenkins_home"
HOME_VOLUME = "jenkins_home"
NETWORK = "jenkins"

# Networks compose provides without a top-level declaration
IMPLICIT_NETWORKS = {"default"}


def load_declaration(path: str | Path) -> ComposeDeclaration:
    """
    Read and parse a compose file.

    Args:
        path: Path to the compose YAML file

    Returns:
        Parsed ComposeDeclaration

    Raises:
        FileNotFoundError: If the file does not exist
        ComposeValidationError: If the YAML is invalid or not a compose mapping
    """
    text = Path(path).read_text()
    return parse_declaration(text, source=str(path))


def parse_declaration(text: str, source: str = "<string>") -> ComposeDeclaration:
    """Parse compose YAML text into a declaration."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ComposeValidationError([f"{source}: invalid YAML: {e}"]) from e

    if not isinstance(data, dict):
        raise ComposeValidationError([f"{source}: top level must be a mapping"])

    services = data.get("services")
    if not isinstance(services, dict):
        raise ComposeValidationError([f"{source}: missing 'services' mapping"])

    try:
        return ComposeDeclaration.from_dict(data)
    except (ValueError, TypeError, AttributeError) as e:
        raise ComposeValidationError([f"{source}: {e}"]) from e


def validate_declaration(decl: ComposeDeclaration) -> list[str]:
    """
    Check a declaration for structural problems.

    Args:
        decl: Declaration to check

    Returns:
        List of human-readable problems; empty if the declaration is valid
    """
    problems: list[str] = []

    if not decl.services:
        problems.append("declaration has no services")

    for service in decl.services.values():
        if not service.image and service.build is None:
            problems.append(f"service '{service.name}' has neither image nor build")

    for service_name, network in decl.network_refs():
        if network not in decl.networks and network not in IMPLICIT_NETWORKS:
            problems.append(
                f"service '{service_name}' uses undeclared network '{network}'"
            )

    for service_name, volume in decl.named_volume_refs():
        if volume not in decl.volumes:
            problems.append(
                f"service '{service_name}' uses undeclared volume '{volume}'"
            )

    for service_name, target in decl.service_refs():
        if target not in decl.services:
            problems.append(
                f"service '{service_name}' references undeclared service '{target}'"
            )

    published: dict[tuple[str, int, str], str] = {}
    for service in decl.services.values():
        for port in service.ports:
            if port.published is None:
                continue
            key = (port.host_ip or "0.0.0.0", port.published, port.protocol)
            owner = published.get(key)
            if owner is not None:
                problems.append(
                    f"services '{owner}' and '{service.name}' both publish "
                    f"host port {port.published}/{port.protocol}"
                )
            else:
                published[key] = service.name

    return problems


def ensure_valid(decl: ComposeDeclaration) -> ComposeDeclaration:
    """
    Validate a declaration, raising if any problem is found.

    Raises:
        ComposeValidationError: With the full list of problems
    """
    problems = validate_declaration(decl)
    if problems:
        logger.debug(f"Declaration has {len(problems)} problem(s)")
        raise ComposeValidationError(problems)
    return decl


def build_default_declaration(
    master_port: int = 8080,
    agent_port: int = 2222,
    agent_context: str = "./agent",
    master_image: str = MASTER_IMAGE,
) -> ComposeDeclaration:
    """
    Build the two-service Jenkins declaration.

    The master keeps its state in a named volume so that `down --volumes`
    yields a fresh Jenkins home. The agent publishes SSH on the host so the
    trust probe can reach it; the MySQL root password is injected from the
    project's .env file rather than baked into the image.

    Args:
        master_port: Host port for the Jenkins web UI
        agent_port: Host port mapped to the agent's sshd
        agent_context: Build context of the agent image
        master_image: Jenkins master image reference

    Returns:
        The default ComposeDeclaration
    """
    master = ServiceSpec(
        name=MASTER_SERVICE,
        image=master_image,
        container_name="jenkins-master",
        restart="unless-stopped",
        ports=[
            PortBinding(target=8080, published=master_port),
            PortBinding(target=50000, published=50000),
        ],
        volumes=[VolumeMount(source=HOME_VOLUME, target=JENKINS_HOME)],
        networks=[NETWORK],
    )
    agent = ServiceSpec(
        name=AGENT_SERVICE,
        build=agent_context,
        container_name="jenkins-agent",
        restart="unless-stopped",
        ports=[PortBinding(target=22, published=agent_port)],
        environment={
            "MYSQL_ROOT_PASSWORD": "${MYSQL_ROOT_PASSWORD:?set MYSQL_ROOT_PASSWORD in .env}"
        },
        networks=[NETWORK],
        depends_on=[MASTER_SERVICE],
    )
    return ComposeDeclaration(
        services={MASTER_SERVICE: master, AGENT_SERVICE: agent},
        networks={NETWORK: {"driver": "bridge"}},
        volumes={HOME_VOLUME: {}},
    )


def dump_declaration(decl: ComposeDeclaration) -> str:
    """Render a declaration as compose YAML, preserving key order."""
    data: dict[str, Any] = decl.to_dict()
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def write_declaration(decl: ComposeDeclaration, path: str | Path) -> Path:
    """Validate and write a declaration to disk."""
    ensure_valid(decl)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dump_declaration(decl))
    logger.info(f"Wrote compose declaration to {target}")
    return target
