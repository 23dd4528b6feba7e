"""
Lab Compose module.

Produces and drives the compose side of the environment: the declaration
(load, validate, render), the agent image build context, and the async
wrapper over the docker compose CLI.
"""

from .agent_image import render_dockerfile, render_sshd_config, write_build_context
from .declaration import (
    build_default_declaration,
    dump_declaration,
    ensure_valid,
    load_declaration,
    parse_declaration,
    validate_declaration,
    write_declaration,
)
from .manager import ComposeManager, ServiceStatus, parse_ps_output

__all__ = [
    "ComposeManager",
    "ServiceStatus",
    "build_default_declaration",
    "dump_declaration",
    "ensure_valid",
    "load_declaration",
    "parse_declaration",
    "parse_ps_output",
    "render_dockerfile",
    "render_sshd_config",
    "validate_declaration",
    "write_build_context",
    "write_declaration",
]
