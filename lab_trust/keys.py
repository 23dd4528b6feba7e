"""
SSH keypair handling for master-to-agent trust.

The keypair is generated once and then persists as static files: the
private half goes to the Jenkins master's credential store, the public half
is baked into the agent image's authorized_keys. Trust holds only while the
two halves match, which is what this module checks.
"""

import base64
import hashlib
import logging
import os
from pathlib import Path

import paramiko

from lab_common.errors import KeyMismatchError
from lab_common.models import KeyPair

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAME = "jenkins_agent_key"
DEFAULT_KEY_BITS = 4096
DEFAULT_COMMENT = "jenkins-master@jenkins-lab"

# Key classes tried, in order, when loading a private key of unknown type
KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.ECDSAKey,
    paramiko.Ed25519Key,
)


def fingerprint_blob(blob: bytes) -> str:
    """
    Compute the OpenSSH SHA256 fingerprint of a public key blob.

    Args:
        blob: Raw (decoded) public key blob

    Returns:
        Fingerprint in the form "SHA256:<base64 without padding>"
    """
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip("=")


def fingerprint(key: paramiko.PKey) -> str:
    """Compute the OpenSSH SHA256 fingerprint of a key."""
    return fingerprint_blob(key.asbytes())


def public_key_line(key: paramiko.PKey, comment: str = "") -> str:
    """Render a key as an OpenSSH authorized_keys line."""
    line = f"{key.get_name()} {key.get_base64()}"
    if comment:
        line += f" {comment}"
    return line


def parse_public_key_line(text: str) -> tuple[str, str, str]:
    """
    Parse the first key line of an OpenSSH public key file.

    Blank lines and comments are skipped.

    Args:
        text: Public key file contents

    Returns:
        Tuple of (key_type, base64_blob, comment)

    Raises:
        ValueError: If no valid key line is found
    """
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 2)
        if len(parts) < 2:
            raise ValueError(f"Malformed public key line: {line[:40]!r}")
        key_type, blob = parts[0], parts[1]
        try:
            base64.b64decode(blob, validate=True)
        except ValueError as e:
            raise ValueError(f"Public key blob is not valid base64: {e}") from e
        comment = parts[2] if len(parts) > 2 else ""
        return key_type, blob, comment
    raise ValueError("No public key found")


def load_private_key(path: str | Path, password: str | None = None) -> paramiko.PKey:
    """
    Load a private key of any supported type (RSA, ECDSA, Ed25519).

    Args:
        path: Private key file
        password: Passphrase for encrypted keys

    Returns:
        Loaded key

    Raises:
        FileNotFoundError: If the file does not exist
        paramiko.PasswordRequiredException: If the key is encrypted and no
            password was given
        paramiko.SSHException: If the file is not a supported private key
    """
    key_path = Path(path)
    if not key_path.is_file():
        raise FileNotFoundError(f"Private key not found: {key_path}")

    errors = []
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key_file(str(key_path), password=password)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError, TypeError, IndexError) as e:
            errors.append(f"{key_class.__name__}: {e}")

    raise paramiko.SSHException(
        f"Unsupported private key {key_path}: " + "; ".join(errors)
    )


def generate_keypair(
    directory: str | Path,
    name: str = DEFAULT_KEY_NAME,
    bits: int = DEFAULT_KEY_BITS,
    comment: str = DEFAULT_COMMENT,
    overwrite: bool = False,
) -> KeyPair:
    """
    Generate the static RSA keypair.

    The private key is written with mode 600, the public key as an
    authorized_keys line next to it ("<name>.pub").

    Args:
        directory: Directory to write the key files into
        name: Base file name of the keypair
        bits: RSA key size
        comment: Comment appended to the public key line
        overwrite: Replace an existing keypair

    Returns:
        KeyPair describing the written files

    Raises:
        FileExistsError: If the keypair already exists and overwrite is False
    """
    key_dir = Path(directory)
    private_path = key_dir / name
    public_path = key_dir / f"{name}.pub"

    if not overwrite and (private_path.exists() or public_path.exists()):
        raise FileExistsError(
            f"Keypair already exists at {private_path}; refusing to regenerate"
        )

    key_dir.mkdir(parents=True, exist_ok=True)
    key = paramiko.RSAKey.generate(bits)

    if private_path.exists():
        private_path.unlink()
    key.write_private_key_file(str(private_path))
    os.chmod(private_path, 0o600)
    public_path.write_text(public_key_line(key, comment) + "\n")

    result = KeyPair(
        private_key_path=private_path,
        public_key_path=public_path,
        key_type=key.get_name(),
        fingerprint=fingerprint(key),
        comment=comment,
    )
    logger.info(f"Generated {result.key_type} keypair {result.fingerprint}")
    return result


def describe_keypair(private_key_path: str | Path, public_key_path: str | Path) -> KeyPair:
    """
    Describe an existing keypair after checking that its halves match.

    Raises:
        KeyMismatchError: If the public key does not belong to the private key
    """
    key = ensure_keys_match(private_key_path, public_key_path)
    _, _, comment = parse_public_key_line(Path(public_key_path).read_text())
    return KeyPair(
        private_key_path=Path(private_key_path),
        public_key_path=Path(public_key_path),
        key_type=key.get_name(),
        fingerprint=fingerprint(key),
        comment=comment,
    )


def keys_match(private_key_path: str | Path, public_key_path: str | Path) -> bool:
    """
    Check whether a public key file belongs to a private key.

    Args:
        private_key_path: Private key file
        public_key_path: OpenSSH public key (or authorized_keys) file

    Returns:
        True if the public key is the private key's public half
    """
    key = load_private_key(private_key_path)
    _, blob, _ = parse_public_key_line(Path(public_key_path).read_text())
    return blob == key.get_base64()


def ensure_keys_match(
    private_key_path: str | Path, public_key_path: str | Path
) -> paramiko.PKey:
    """
    Load the private key and verify the public key matches it.

    Returns:
        The loaded private key

    Raises:
        KeyMismatchError: If the halves do not match
    """
    key = load_private_key(private_key_path)
    _, blob, _ = parse_public_key_line(Path(public_key_path).read_text())
    if blob != key.get_base64():
        raise KeyMismatchError(
            f"{public_key_path} ({fingerprint_blob(base64.b64decode(blob))}) "
            f"does not match {private_key_path} ({fingerprint(key)})"
        )
    return key


def authorized_keys_contains(authorized_keys_text: str, key: paramiko.PKey) -> bool:
    """
    Check whether an authorized_keys file authorizes a key.

    Lines may carry an options prefix ("from=... ssh-rsa AAAA..."), so any
    field equal to the key's base64 blob counts.
    """
    blob = key.get_base64()
    for raw in authorized_keys_text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if blob in line.split():
            return True
    return False
