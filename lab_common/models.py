"""
Data models for the Jenkins lab environment.

These models represent the few durable entities this toolkit owns: the
compose declaration, the agent keypair, and the results of smoke checks.
Everything else (Jenkins home, MySQL data) belongs to the tools themselves.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

TrustOutcome = Literal["accepted", "refused", "timeout"]

BIND_PREFIXES = ("/", ".", "~")


@dataclass
class PortBinding:
    """
    A port published by a compose service.

    Supports the short syntax ("8080", "8080:8080", "127.0.0.1:8080:8080/tcp")
    and the long mapping syntax.
    """

    target: int
    published: int | None = None
    host_ip: str | None = None
    protocol: str = "tcp"

    @classmethod
    def parse(cls, value: Any) -> "PortBinding":
        """
        Parse a compose port entry.

        Args:
            value: Short-syntax string/int or long-syntax mapping

        Returns:
            Parsed PortBinding

        Raises:
            ValueError: If the entry cannot be parsed
        """
        if isinstance(value, dict):
            if "target" not in value:
                raise ValueError(f"Port mapping without target: {value!r}")
            published = value.get("published")
            return cls(
                target=int(value["target"]),
                published=int(published) if published not in (None, "") else None,
                host_ip=value.get("host_ip"),
                protocol=value.get("protocol", "tcp"),
            )

        if isinstance(value, int):
            return cls(target=value)

        text = str(value).strip()
        protocol = "tcp"
        if "/" in text:
            text, protocol = text.rsplit("/", 1)

        parts = text.split(":")
        try:
            if len(parts) == 1:
                return cls(target=int(parts[0]), protocol=protocol)
            if len(parts) == 2:
                return cls(
                    target=int(parts[1]),
                    published=int(parts[0]) if parts[0] else None,
                    protocol=protocol,
                )
            if len(parts) == 3:
                return cls(
                    target=int(parts[2]),
                    published=int(parts[1]) if parts[1] else None,
                    host_ip=parts[0] or None,
                    protocol=protocol,
                )
        except ValueError as e:
            raise ValueError(f"Invalid port entry {value!r}: {e}") from e

        raise ValueError(f"Invalid port entry {value!r}")

    def to_short(self) -> str:
        """Render back to the compose short syntax."""
        text = str(self.target)
        if self.published is not None:
            text = f"{self.published}:{text}"
            if self.host_ip:
                text = f"{self.host_ip}:{text}"
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text


@dataclass
class VolumeMount:
    """
    A volume mounted into a compose service.

    A source starting with "/", "." or "~" is a host bind mount; any other
    non-empty source names a top-level volume of the declaration.
    """

    target: str
    source: str = ""
    read_only: bool = False
    type: str | None = None

    @classmethod
    def parse(cls, value: Any) -> "VolumeMount":
        """
        Parse a compose volume entry.

        Args:
            value: Short-syntax string or long-syntax mapping

        Returns:
            Parsed VolumeMount

        Raises:
            ValueError: If the entry cannot be parsed
        """
        if isinstance(value, dict):
            if "target" not in value:
                raise ValueError(f"Volume mapping without target: {value!r}")
            return cls(
                target=str(value["target"]),
                source=str(value.get("source") or ""),
                read_only=bool(value.get("read_only", False)),
                type=value.get("type"),
            )

        parts = str(value).split(":")
        if len(parts) == 1:
            return cls(target=parts[0])
        if len(parts) == 2:
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3:
            modes = parts[2].split(",")
            return cls(source=parts[0], target=parts[1], read_only="ro" in modes)

        raise ValueError(f"Invalid volume entry {value!r}")

    @property
    def is_bind(self) -> bool:
        if self.type is not None:
            return self.type == "bind"
        return self.source.startswith(BIND_PREFIXES)

    @property
    def is_named(self) -> bool:
        """True if the mount references a top-level named volume."""
        if self.type is not None and self.type != "volume":
            return False
        return bool(self.source) and not self.is_bind

    def to_short(self) -> str:
        if not self.source:
            return self.target
        text = f"{self.source}:{self.target}"
        if self.read_only:
            text += ":ro"
        return text


def _as_name_list(value: Any) -> list[str]:
    """Normalize list-or-mapping compose fields (networks, depends_on)."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [str(k) for k in value]
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _as_environment(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    env = {}
    for item in value:
        key, _, val = str(item).partition("=")
        env[key] = val
    return env


@dataclass
class ServiceSpec:
    """
    One service of a compose declaration.

    Only the fields this toolkit reasons about are modelled; everything else
    is kept verbatim in `extra` so a round trip does not lose configuration.
    """

    name: str
    image: str | None = None
    build: str | dict[str, Any] | None = None
    container_name: str | None = None
    ports: list[PortBinding] = field(default_factory=list)
    volumes: list[VolumeMount] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    volumes_from: list[str] = field(default_factory=list)
    restart: str | None = None
    command: str | list[str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "image",
        "build",
        "container_name",
        "ports",
        "volumes",
        "networks",
        "environment",
        "depends_on",
        "volumes_from",
        "restart",
        "command",
    }

    @property
    def build_context(self) -> str | None:
        if isinstance(self.build, dict):
            return self.build.get("context", ".")
        return self.build

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> "ServiceSpec":
        """Create a service from its compose mapping."""
        data = data or {}
        return cls(
            name=name,
            image=data.get("image"),
            build=data.get("build"),
            container_name=data.get("container_name"),
            ports=[PortBinding.parse(p) for p in data.get("ports") or []],
            volumes=[VolumeMount.parse(v) for v in data.get("volumes") or []],
            networks=_as_name_list(data.get("networks")),
            environment=_as_environment(data.get("environment")),
            depends_on=_as_name_list(data.get("depends_on")),
            volumes_from=_as_name_list(data.get("volumes_from")),
            restart=data.get("restart"),
            command=data.get("command"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the service to its compose mapping, omitting unset fields."""
        result: dict[str, Any] = {}
        if self.image:
            result["image"] = self.image
        if self.build is not None:
            result["build"] = self.build
        if self.container_name:
            result["container_name"] = self.container_name
        if self.restart:
            result["restart"] = self.restart
        if self.command is not None:
            result["command"] = self.command
        if self.ports:
            result["ports"] = [p.to_short() for p in self.ports]
        if self.volumes:
            result["volumes"] = [v.to_short() for v in self.volumes]
        if self.environment:
            result["environment"] = dict(self.environment)
        if self.networks:
            result["networks"] = list(self.networks)
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        if self.volumes_from:
            result["volumes_from"] = list(self.volumes_from)
        result.update(self.extra)
        return result


@dataclass
class ComposeDeclaration:
    """
    A compose file: services plus their top-level networks and volumes.

    Invariant: every network, named volume and service referenced by a
    service is declared here (see lab_compose.declaration.validate_declaration).
    """

    services: dict[str, ServiceSpec] = field(default_factory=dict)
    networks: dict[str, dict[str, Any]] = field(default_factory=dict)
    volumes: dict[str, dict[str, Any]] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComposeDeclaration":
        services = data.get("services") or {}
        return cls(
            services={
                name: ServiceSpec.from_dict(name, spec)
                for name, spec in services.items()
            },
            networks={k: v or {} for k, v in (data.get("networks") or {}).items()},
            volumes={k: v or {} for k, v in (data.get("volumes") or {}).items()},
            extra={
                k: v
                for k, v in data.items()
                if k not in ("services", "networks", "volumes")
            },
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.extra)
        result["services"] = {
            name: service.to_dict() for name, service in self.services.items()
        }
        if self.networks:
            result["networks"] = {k: dict(v) for k, v in self.networks.items()}
        if self.volumes:
            result["volumes"] = {k: dict(v) for k, v in self.volumes.items()}
        return result

    def named_volume_refs(self) -> list[tuple[str, str]]:
        """List (service, volume) pairs for every named volume reference."""
        return [
            (service.name, mount.source)
            for service in self.services.values()
            for mount in service.volumes
            if mount.is_named
        ]

    def network_refs(self) -> list[tuple[str, str]]:
        return [
            (service.name, network)
            for service in self.services.values()
            for network in service.networks
        ]

    def service_refs(self) -> list[tuple[str, str]]:
        """List (service, referenced service) pairs from depends_on/volumes_from."""
        refs = []
        for service in self.services.values():
            for target in service.depends_on:
                refs.append((service.name, target))
            for entry in service.volumes_from:
                # "container:<name>" points outside the declaration
                if entry.startswith("container:"):
                    continue
                refs.append((service.name, entry.split(":")[0]))
        return refs


@dataclass
class KeyPair:
    """
    The static SSH keypair establishing master-to-agent trust.

    The private half is handed to the Jenkins master's credential store;
    the public half is baked into the agent's authorized_keys.
    """

    private_key_path: Path
    public_key_path: Path
    key_type: str
    fingerprint: str
    comment: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "private_key_path": str(self.private_key_path),
            "public_key_path": str(self.public_key_path),
            "key_type": self.key_type,
            "fingerprint": self.fingerprint,
            "comment": self.comment,
        }


@dataclass
class TrustProbe:
    """
    Result of one SSH connection attempt against the agent.

    `reason` narrows the outcome: "authenticated", "auth_failed" (key
    mismatch), "no_listener" (sshd not running), "unreachable" or "ssh_error".
    """

    outcome: TrustOutcome
    host: str
    port: int
    username: str
    reason: str = ""
    detail: str = ""
    exit_status: int | None = None
    output: str = ""

    @property
    def accepted(self) -> bool:
        return self.outcome == "accepted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "reason": self.reason,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "detail": self.detail,
            "exit_status": self.exit_status,
        }


@dataclass
class CheckResult:
    """Outcome of a single smoke check."""

    name: str
    passed: bool
    detail: str = ""
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "detail": self.detail,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class SmokeRun:
    """
    A recorded execution of the infrastructure smoke checks.

    A run succeeds only if every check passed.
    """

    id: str
    started_at: datetime
    finished_at: datetime | None = None
    checks: list[CheckResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.checks) and all(check.passed for check in self.checks)

    def to_dict(self) -> dict[str, Any]:
        """Convert run to dictionary format (for JSON output)."""
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat()
            if self.finished_at
            else None,
            "success": self.success,
            "checks": [check.to_dict() for check in self.checks],
        }

    def to_summary_dict(self) -> dict[str, Any]:
        """Convert run to summary format (without checks, for listings)."""
        return {
            "run_id": self.id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat()
            if self.finished_at
            else None,
            "success": self.success,
            "passed": sum(1 for check in self.checks if check.passed),
            "total": len(self.checks),
        }
