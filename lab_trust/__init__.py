"""
Lab Trust module.

SSH trust bootstrap between the Jenkins master and the build agent: the
static keypair, the check that its halves match, and the probe that
confirms a key holder can log in (and that an unrelated key cannot).
"""

from .keys import (
    authorized_keys_contains,
    describe_keypair,
    ensure_keys_match,
    fingerprint,
    generate_keypair,
    keys_match,
    load_private_key,
    parse_public_key_line,
    public_key_line,
)
from .probe import probe_trust

__all__ = [
    "authorized_keys_contains",
    "describe_keypair",
    "ensure_keys_match",
    "fingerprint",
    "generate_keypair",
    "keys_match",
    "load_private_key",
    "parse_public_key_line",
    "probe_trust",
    "public_key_line",
]
