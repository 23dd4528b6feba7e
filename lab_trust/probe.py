"""
Trust probe: can a key holder get a non-interactive shell on the agent?

The probe authenticates with the given private key only; the SSH agent and
key discovery are disabled. Outcomes map onto the agent's failure modes:

- accepted: the key is authorized
- refused:  key mismatch, or no sshd listening
- timeout:  the agent is unreachable (network partition)
"""

import logging
import socket
from pathlib import Path

import paramiko

from lab_common.models import TrustOutcome, TrustProbe

from .keys import fingerprint, load_private_key

logger = logging.getLogger(__name__)

DEFAULT_PROBE_COMMAND = "true"


def probe_trust(
    host: str,
    port: int,
    username: str,
    private_key: paramiko.PKey | str | Path,
    timeout: float = 10.0,
    command: str | None = None,
) -> TrustProbe:
    """
    Attempt a key-authenticated SSH login to the agent.

    Args:
        host: Agent host name or address
        port: Agent SSH port
        username: Build user
        private_key: Loaded key or path to a private key file
        timeout: Seconds for connect, banner and authentication
        command: Optional command to run once logged in

    Returns:
        TrustProbe describing the outcome; connection failures are reported
        in the result, not raised
    """
    key = (
        private_key
        if isinstance(private_key, paramiko.PKey)
        else load_private_key(private_key)
    )
    logger.debug(
        f"Probing {username}@{host}:{port} with key {fingerprint(key)}"
    )

    client = paramiko.SSHClient()
    # A freshly built agent has a freshly generated host key
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    def result(
        outcome: TrustOutcome,
        reason: str,
        detail: str,
        exit_status: int | None = None,
        output: str = "",
    ) -> TrustProbe:
        return TrustProbe(
            outcome=outcome,
            host=host,
            port=port,
            username=username,
            reason=reason,
            detail=detail,
            exit_status=exit_status,
            output=output,
        )

    try:
        client.connect(
            hostname=host,
            port=port,
            username=username,
            pkey=key,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )

        if command is None:
            logger.info(f"Key accepted by {username}@{host}:{port}")
            return result("accepted", "authenticated", "authenticated")

        _, stdout, _ = client.exec_command(command, timeout=timeout)
        output = stdout.read().decode(errors="replace")
        exit_status = stdout.channel.recv_exit_status()
        logger.info(
            f"Key accepted by {username}@{host}:{port}; "
            f"'{command}' exited {exit_status}"
        )
        return result(
            "accepted",
            "authenticated",
            f"command exited {exit_status}",
            exit_status=exit_status,
            output=output,
        )

    except paramiko.AuthenticationException as e:
        logger.info(f"Key refused by {username}@{host}:{port}: {e}")
        return result("refused", "auth_failed", f"authentication failed: {e}")
    except paramiko.ssh_exception.NoValidConnectionsError as e:
        logger.info(f"No sshd reachable at {host}:{port}: {e}")
        return result("refused", "no_listener", f"connection refused: {e}")
    except ConnectionRefusedError as e:
        return result("refused", "no_listener", f"connection refused: {e}")
    except (socket.timeout, TimeoutError) as e:
        logger.info(f"Timed out reaching {host}:{port}")
        return result("timeout", "unreachable", f"timed out after {timeout}s: {e}")
    except (paramiko.SSHException, EOFError, OSError) as e:
        # TCP connected but the SSH banner never arrived in time
        message = str(e).lower()
        if "banner" in message or "timed out" in message or "timeout" in message:
            logger.info(f"No SSH banner from {host}:{port}: {e}")
            return result("timeout", "unreachable", f"no SSH response: {e}")
        logger.info(f"SSH handshake with {host}:{port} failed: {e}")
        return result("refused", "ssh_error", f"ssh error: {e}")
    finally:
        client.close()
