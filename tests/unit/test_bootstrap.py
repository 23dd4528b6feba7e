"""
Unit tests for project bootstrap (init_project and the trust file helpers).
"""

import os
import stat

import pytest

from lab_common.settings import LabSettings
from lab_compose.agent_image import AUTHORIZED_KEY_FILE
from lab_compose.declaration import load_declaration, validate_declaration
from lab_admin.bootstrap import (
    DB_PASSWORD_VAR,
    check_trust_files,
    init_project,
    read_env_file,
    sync_authorized_key,
    write_env_file,
)
from lab_trust.keys import generate_keypair, keys_match


@pytest.fixture
def settings(tmp_path):
    return LabSettings(project_dir=tmp_path / "lab", agent_port=2200)


@pytest.fixture
def initialized(settings):
    """A project created by init_project with a small key."""
    return init_project(settings, key_bits=2048)


class TestInitProject:
    """Test suite for init_project."""

    def test_creates_all_files(self, settings, initialized):
        """Test that a fresh project gets every file compose needs."""
        assert settings.compose_path.exists()
        assert settings.private_key_path.exists()
        assert settings.public_key_path.exists()
        assert (settings.agent_context / "Dockerfile").exists()
        assert (settings.agent_context / AUTHORIZED_KEY_FILE).exists()
        assert settings.env_file.exists()
        assert str(settings.compose_path) in initialized.created
        assert initialized.dockerfile == settings.agent_context / "Dockerfile"

    def test_compose_file_uses_agent_port(self, settings, initialized):
        decl = load_declaration(settings.compose_path)

        assert validate_declaration(decl) == []
        assert decl.services["agent"].ports[0].published == 2200

    def test_private_key_stays_out_of_build_context(self, settings, initialized):
        """Test that only the public half is copied to the agent context."""
        names = {p.name for p in settings.agent_context.iterdir()}

        assert settings.private_key_path.name not in names
        assert keys_match(
            settings.private_key_path, settings.agent_context / AUTHORIZED_KEY_FILE
        )

    def test_rerun_keeps_existing_keypair(self, settings, initialized):
        """Test that the keypair is generated once and then kept."""
        again = init_project(settings, key_bits=2048)

        assert again.keypair.fingerprint == initialized.keypair.fingerprint
        assert again.created == []

    def test_force_regenerates(self, settings, initialized):
        password = read_env_file(settings.env_file)[DB_PASSWORD_VAR]

        forced = init_project(settings, force=True, key_bits=2048)

        assert forced.keypair.fingerprint != initialized.keypair.fingerprint
        assert read_env_file(settings.env_file)[DB_PASSWORD_VAR] != password
        assert check_trust_files(settings) == []

    def test_rerun_resyncs_authorized_key(self, settings, initialized, stranger_key):
        """Test that a stale key in the build context is replaced."""
        target = settings.agent_context / AUTHORIZED_KEY_FILE
        target.write_text(f"{stranger_key.get_name()} {stranger_key.get_base64()}\n")

        init_project(settings, key_bits=2048)

        assert keys_match(settings.private_key_path, target)


class TestEnvFile:
    """Test suite for the .env password file."""

    def test_password_written_private(self, tmp_path):
        path = tmp_path / ".env"

        assert write_env_file(path) is True
        values = read_env_file(path)
        assert len(values[DB_PASSWORD_VAR]) >= 32
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_existing_password_kept(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("# local\nTZ=UTC\nMYSQL_ROOT_PASSWORD=keepme\n")

        assert write_env_file(path) is False
        assert read_env_file(path)[DB_PASSWORD_VAR] == "keepme"

    def test_force_keeps_other_values(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("TZ=UTC\nMYSQL_ROOT_PASSWORD=old\n")

        assert write_env_file(path, force=True) is True
        values = read_env_file(path)
        assert values["TZ"] == "UTC"
        assert values[DB_PASSWORD_VAR] != "old"

    def test_read_missing_file(self, tmp_path):
        assert read_env_file(tmp_path / ".env") == {}


class TestTrustFiles:
    """Test suite for sync_authorized_key and check_trust_files."""

    def test_clean_project_has_no_problems(self, settings, initialized):
        assert check_trust_files(settings) == []

    def test_missing_private_key(self, settings):
        problems = check_trust_files(settings)

        assert len(problems) == 1
        assert problems[0].startswith("private key missing")

    def test_mismatched_public_key(self, settings, initialized, tmp_path):
        """Test that a replaced public key is reported."""
        other = generate_keypair(tmp_path / "other", bits=2048)
        settings.public_key_path.write_text(other.public_key_path.read_text())

        problems = check_trust_files(settings)

        assert problems == [
            f"{settings.public_key_path} does not match {settings.private_key_path}"
        ]

    def test_missing_authorized_key(self, settings, initialized):
        (settings.agent_context / AUTHORIZED_KEY_FILE).unlink()

        problems = check_trust_files(settings)

        assert problems == [
            f"public key missing: {settings.agent_context / AUTHORIZED_KEY_FILE}"
        ]

    def test_sync_is_noop_when_matching(self, settings, initialized):
        assert sync_authorized_key(settings) is False

    def test_sync_replaces_malformed_key(self, settings, initialized):
        """Test that an unparsable build-context key is overwritten."""
        (settings.agent_context / AUTHORIZED_KEY_FILE).write_text("ssh-rsa\n")

        assert sync_authorized_key(settings) is True
        assert check_trust_files(settings) == []

    def test_sync_restores_missing_key(self, settings, initialized):
        (settings.agent_context / AUTHORIZED_KEY_FILE).unlink()

        assert sync_authorized_key(settings) is True
        assert check_trust_files(settings) == []
