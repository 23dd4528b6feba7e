"""
Build context for the SSH-enabled Fedora build agent.

The agent image layers OpenSSH, MySQL and a headless JDK onto Fedora and
trusts exactly one public key for the build user. Password authentication
is disabled, so the only way in is the master's private key.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

BASE_IMAGE = "fedora:41"
AGENT_USER = "jenkins"
AUTHORIZED_KEY_FILE = "jenkins_agent_key.pub"
DEFAULT_PACKAGES = (
    "openssh-server",
    "mysql-server",
    "java-21-openjdk-headless",
    "git",
    "procps-ng",
)

# Fedora installs the server outside PATH
MYSQLD_PATH = "/usr/libexec/mysqld"
MYSQL_START_TIMEOUT = 60


def render_dockerfile(
    user: str = AGENT_USER,
    base_image: str = BASE_IMAGE,
    packages: tuple[str, ...] = DEFAULT_PACKAGES,
    key_file: str = AUTHORIZED_KEY_FILE,
) -> str:
    """
    Render the agent Dockerfile.

    Args:
        user: Build user Jenkins logs in as
        base_image: Base image reference
        packages: dnf packages to install
        key_file: Public key file name inside the build context

    Returns:
        Dockerfile text
    """
    package_list = " \\\n        ".join(packages)
    home = f"/home/{user}"
    return f"""FROM {base_image}

RUN dnf -y install \\
        {package_list} \\
    && dnf clean all

RUN useradd --create-home --shell /bin/bash {user} \\
    && mkdir -p {home}/.ssh \\
    && chmod 700 {home}/.ssh

COPY {key_file} {home}/.ssh/authorized_keys
RUN chown -R {user}:{user} {home}/.ssh \\
    && chmod 600 {home}/.ssh/authorized_keys

COPY sshd_config /etc/ssh/sshd_config.d/10-jenkins-agent.conf
COPY entrypoint.sh /usr/local/bin/entrypoint.sh

EXPOSE 22

ENTRYPOINT ["/usr/local/bin/entrypoint.sh"]
"""


def render_sshd_config(user: str = AGENT_USER) -> str:
    """Render the sshd drop-in allowing only key-based logins for the build user."""
    return f"""PubkeyAuthentication yes
PasswordAuthentication no
KbdInteractiveAuthentication no
PermitRootLogin no
PermitEmptyPasswords no
AllowUsers {user}
AuthorizedKeysFile .ssh/authorized_keys
"""


def render_entrypoint() -> str:
    """
    Render the container entrypoint.

    Host keys are generated on first start. When a root password has been
    injected, MySQL is initialised and started in the background; a MySQL
    failure is reported on stderr and never keeps sshd from starting. sshd
    then runs in the foreground as the container's main process.
    """
    return f"""#!/bin/sh
set -e

MYSQLD={MYSQLD_PATH}

ssh-keygen -A

start_mysql() {{
    install -d -o mysql -g mysql -m 755 /run/mysqld || return 1
    if [ ! -d /var/lib/mysql/mysql ]; then
        "$MYSQLD" --initialize-insecure --user=mysql || return 1
        "$MYSQLD" --user=mysql --skip-networking &
        pid=$!
        tries=0
        until mysqladmin ping --silent; do
            tries=$((tries + 1))
            if [ "$tries" -ge {MYSQL_START_TIMEOUT} ]; then
                kill "$pid" 2>/dev/null
                return 1
            fi
            sleep 1
        done
        mysql -uroot -e "ALTER USER 'root'@'localhost' IDENTIFIED BY '${{MYSQL_ROOT_PASSWORD}}';" || return 1
        mysqladmin -uroot -p"${{MYSQL_ROOT_PASSWORD}}" shutdown || return 1
        wait "$pid" || true
    fi
    "$MYSQLD" --user=mysql &
}}

if [ -n "${{MYSQL_ROOT_PASSWORD}}" ]; then
    start_mysql || echo "entrypoint: MySQL failed to start, continuing with sshd" >&2
fi

exec /usr/sbin/sshd -D -e
"""


def write_build_context(
    directory: str | Path,
    public_key_text: str,
    user: str = AGENT_USER,
    packages: tuple[str, ...] = DEFAULT_PACKAGES,
) -> Path:
    """
    Write the agent build context.

    Args:
        directory: Target directory (created if missing)
        public_key_text: OpenSSH public key line to authorize
        user: Build user on the agent
        packages: dnf packages to install

    Returns:
        Path to the written Dockerfile
    """
    context = Path(directory)
    context.mkdir(parents=True, exist_ok=True)

    dockerfile = context / "Dockerfile"
    dockerfile.write_text(render_dockerfile(user=user, packages=packages))
    (context / "sshd_config").write_text(render_sshd_config(user))

    entrypoint = context / "entrypoint.sh"
    entrypoint.write_text(render_entrypoint())
    os.chmod(entrypoint, 0o755)

    key_line = public_key_text.strip() + "\n"
    (context / AUTHORIZED_KEY_FILE).write_text(key_line)

    logger.info(f"Wrote agent build context to {context}")
    return dockerfile
