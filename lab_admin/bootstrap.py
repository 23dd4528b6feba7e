"""
Project bootstrap: lay down everything `docker compose up` needs.

Creates the compose declaration, the .env file holding the injected MySQL
root password, the static SSH keypair and the agent build context. Existing
files are kept unless forced, because the keypair is generated once and the
master's credential store depends on it.
"""

import logging
import os
import secrets
import shutil
from dataclasses import dataclass
from pathlib import Path

from lab_common.models import KeyPair
from lab_common.settings import KEY_NAME, LabSettings
from lab_compose.agent_image import AUTHORIZED_KEY_FILE, write_build_context
from lab_compose.declaration import (
    build_default_declaration,
    ensure_valid,
    load_declaration,
    write_declaration,
)
from lab_trust.keys import (
    DEFAULT_KEY_BITS,
    describe_keypair,
    generate_keypair,
    keys_match,
)

logger = logging.getLogger(__name__)

DB_PASSWORD_VAR = "MYSQL_ROOT_PASSWORD"


def generate_db_password() -> str:
    """Generate a random MySQL root password (192 bits, URL-safe)."""
    return secrets.token_urlsafe(24)


def read_env_file(path: Path) -> dict[str, str]:
    """Parse a compose .env file (KEY=VALUE lines, # comments)."""
    values: dict[str, str] = {}
    if not path.exists():
        return values
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


def write_env_file(path: Path, force: bool = False) -> bool:
    """
    Ensure the .env file carries a MySQL root password.

    Args:
        path: .env file path
        force: Replace an existing password

    Returns:
        True if a new password was written
    """
    values = read_env_file(path)
    if values.get(DB_PASSWORD_VAR) and not force:
        return False

    values[DB_PASSWORD_VAR] = generate_db_password()
    lines = ["# Injected into the agent container; keep out of version control"]
    lines.extend(f"{key}={value}" for key, value in values.items())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    os.chmod(path, 0o600)
    logger.info(f"Wrote {DB_PASSWORD_VAR} to {path}")
    return True


@dataclass
class InitResult:
    """What `init_project` created or kept."""

    compose_path: Path
    dockerfile: Path
    env_file: Path
    keypair: KeyPair
    created: list[str]


def init_project(
    settings: LabSettings, force: bool = False, key_bits: int = DEFAULT_KEY_BITS
) -> InitResult:
    """
    Create the lab project files under settings.project_dir.

    Args:
        settings: Resolved settings (project dir, agent port, user)
        force: Regenerate keys, password, compose file and build context
        key_bits: RSA key size for a newly generated keypair

    Returns:
        InitResult listing the files that were written

    Raises:
        KeyMismatchError: If an existing keypair's halves do not match
        ComposeValidationError: If an existing compose file is invalid
    """
    created: list[str] = []
    settings.project_dir.mkdir(parents=True, exist_ok=True)

    key_dir = settings.private_key_path.parent
    if force or not settings.private_key_path.exists():
        keypair = generate_keypair(
            key_dir, name=KEY_NAME, bits=key_bits, overwrite=True
        )
        created.append(str(keypair.private_key_path))
        created.append(str(keypair.public_key_path))
    else:
        keypair = describe_keypair(
            settings.private_key_path, settings.public_key_path
        )

    if force or not settings.compose_path.exists():
        decl = build_default_declaration(agent_port=settings.agent_port)
        write_declaration(decl, settings.compose_path)
        created.append(str(settings.compose_path))
    else:
        ensure_valid(load_declaration(settings.compose_path))

    dockerfile = settings.agent_context / "Dockerfile"
    public_key_text = settings.public_key_path.read_text()
    if force or not dockerfile.exists():
        write_build_context(
            settings.agent_context, public_key_text, user=settings.agent_user
        )
        created.append(str(settings.agent_context))
    else:
        sync_authorized_key(settings)

    if write_env_file(settings.env_file, force=force):
        created.append(str(settings.env_file))

    return InitResult(
        compose_path=settings.compose_path,
        dockerfile=dockerfile,
        env_file=settings.env_file,
        keypair=keypair,
        created=created,
    )


def sync_authorized_key(settings: LabSettings) -> bool:
    """
    Copy the public key into the agent build context if it differs.

    Returns:
        True if the build context's key was replaced
    """
    target = settings.agent_context / AUTHORIZED_KEY_FILE
    if target.exists():
        try:
            if keys_match(settings.private_key_path, target):
                return False
        except ValueError as e:
            logger.warning(f"Replacing unreadable authorized key {target}: {e}")
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(settings.public_key_path, target)
    logger.info(f"Updated authorized key in {target}")
    return True


def check_trust_files(settings: LabSettings) -> list[str]:
    """
    Check that both copies of the public key match the private key.

    Returns:
        List of problems; empty if the keypair and build context agree
    """
    problems = []
    private = settings.private_key_path
    if not private.exists():
        return [f"private key missing: {private}"]

    for public in (settings.public_key_path, settings.agent_context / AUTHORIZED_KEY_FILE):
        if not public.exists():
            problems.append(f"public key missing: {public}")
            continue
        try:
            if not keys_match(private, public):
                problems.append(f"{public} does not match {private}")
        except ValueError as e:
            problems.append(f"{public}: {e}")
    return problems
