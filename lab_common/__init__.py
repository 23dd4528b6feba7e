"""
Lab Common module.

Shared domain models, settings and errors used across the lab toolkit
components (compose, trust, smoke, persistence, admin CLI).

The common module has no dependencies on other lab_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .errors import (
    ComposeCommandError,
    ComposeValidationError,
    KeyMismatchError,
    LabError,
)
from .models import (
    CheckResult,
    ComposeDeclaration,
    KeyPair,
    PortBinding,
    ServiceSpec,
    SmokeRun,
    TrustProbe,
    VolumeMount,
)
from .settings import LabSettings

__all__ = [
    "CheckResult",
    "ComposeCommandError",
    "ComposeDeclaration",
    "ComposeValidationError",
    "KeyMismatchError",
    "KeyPair",
    "LabError",
    "LabSettings",
    "PortBinding",
    "ServiceSpec",
    "SmokeRun",
    "TrustProbe",
    "VolumeMount",
]
