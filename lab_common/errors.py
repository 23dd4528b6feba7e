"""
Exceptions raised by the lab toolkit.

Failures of the underlying tools (docker compose, sshd, Jenkins) are not
translated: their diagnostics are carried through unchanged so the operator
sees what the tool said.
"""


class LabError(RuntimeError):
    """Base class for operator-facing failures."""


class ComposeValidationError(LabError):
    """A compose declaration is malformed or has dangling references."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__(
            "Invalid compose declaration:\n"
            + "\n".join(f"  - {problem}" for problem in problems)
        )


class KeyMismatchError(LabError):
    """The public key does not belong to the private key."""


class ComposeCommandError(LabError):
    """A docker compose subcommand exited with a non-zero status."""

    def __init__(self, subcommand: str, returncode: int, stderr: str):
        self.subcommand = subcommand
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"docker compose {subcommand} failed (exit {returncode}): {stderr.strip()}"
        )
