"""
Lab Smoke module.

Infrastructure smoke checks for a running lab environment.
"""

from .checks import (
    check_agent_accepts,
    check_agent_rejects_unrelated,
    check_declaration,
    check_fresh_home,
    check_master_http,
    run_smoke,
)

__all__ = [
    "check_agent_accepts",
    "check_agent_rejects_unrelated",
    "check_declaration",
    "check_fresh_home",
    "check_master_http",
    "run_smoke",
]
