"""Public package entrypoint for the base build-environment provisioner."""

from .backends import DockerBackend, InProcessBackend, ProvisionBackend
from .compiler import emit_dockerfile, render_dockerfile
from .config import default_environment, load_environment
from .environment import BuildEnvironment
from .errors import (
    BackendExecutionError,
    BuildEnvError,
    ContextRootConflict,
    LockfileError,
    PackageInstallFailed,
    PolicyError,
    StateTransitionError,
    ToolchainUnavailable,
    ValidationError,
)
from .models import (
    ContextRoot,
    DependencyLayer,
    DerivedArtifact,
    EnvironmentArtifact,
    EnvironmentDefinition,
    PackageSet,
    ProvisionState,
    StageLabel,
    ToolchainSpec,
)
from .policy import Policy
from .provisioner import Provisioner

__all__ = [
    "BackendExecutionError",
    "BuildEnvError",
    "BuildEnvironment",
    "ContextRoot",
    "ContextRootConflict",
    "DependencyLayer",
    "DerivedArtifact",
    "DockerBackend",
    "EnvironmentArtifact",
    "EnvironmentDefinition",
    "InProcessBackend",
    "LockfileError",
    "PackageInstallFailed",
    "PackageSet",
    "Policy",
    "PolicyError",
    "ProvisionBackend",
    "ProvisionState",
    "Provisioner",
    "StageLabel",
    "StateTransitionError",
    "ToolchainSpec",
    "ToolchainUnavailable",
    "ValidationError",
    "default_environment",
    "emit_dockerfile",
    "load_environment",
    "render_dockerfile",
]
