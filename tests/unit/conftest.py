"""
Shared fixtures for unit tests.

Provides an in-process SSH server standing in for the build agent, so the
trust probe can be exercised against real key authentication.
"""

import socket
import threading
import time

import paramiko
import pytest


class _AgentInterface(paramiko.ServerInterface):
    """Accepts exactly one public key for one user; no passwords."""

    def __init__(self, username: str, authorized_key: paramiko.PKey):
        self.username = username
        self.authorized_key = authorized_key

    def get_allowed_auths(self, username):
        return "publickey"

    def check_auth_password(self, username, password):
        return paramiko.AUTH_FAILED

    def check_auth_publickey(self, username, key):
        if (
            username == self.username
            and key.get_base64() == self.authorized_key.get_base64()
        ):
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_request(self, kind, chanid):
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_exec_request(self, channel, command):
        exit_status = 0 if command == b"true" else 3
        threading.Thread(
            target=self._finish, args=(channel, exit_status), daemon=True
        ).start()
        return True

    @staticmethod
    def _finish(channel, exit_status):
        # Let the exec reply reach the client first
        time.sleep(0.05)
        channel.sendall(b"ran\n")
        channel.send_exit_status(exit_status)
        channel.close()


class StubAgentServer:
    """Minimal SSH server on 127.0.0.1 trusting one key."""

    def __init__(self, username: str, authorized_key: paramiko.PKey):
        self.username = username
        self.authorized_key = authorized_key
        self.host_key = paramiko.RSAKey.generate(2048)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(5)
        self._sock.settimeout(0.2)
        self.port = self._sock.getsockname()[1]
        self._transports: list[paramiko.Transport] = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> "StubAgentServer":
        self._thread.start()
        return self

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            conn.settimeout(None)
            transport = paramiko.Transport(conn)
            transport.add_server_key(self.host_key)
            self._transports.append(transport)
            try:
                transport.start_server(
                    server=_AgentInterface(self.username, self.authorized_key)
                )
            except (paramiko.SSHException, EOFError):
                continue

    def stop(self) -> None:
        self._stop.set()
        self._sock.close()
        for transport in self._transports:
            transport.close()
        self._thread.join(timeout=2)


@pytest.fixture(scope="session")
def master_key():
    """The key the agent trusts."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def stranger_key():
    """A key the agent has never seen."""
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def agent_server(master_key):
    """An SSH server trusting master_key for user 'jenkins'."""
    server = StubAgentServer("jenkins", master_key).start()
    yield server
    server.stop()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def silent_listener():
    """A port that accepts TCP connections but never speaks SSH."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(5)
    yield sock.getsockname()[1]
    sock.close()
