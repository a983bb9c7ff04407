"""Provisioning backend interfaces and implementations."""

from buildenv.errors import ValidationError

from .base import ProvisionBackend, discard_after_failure
from .docker import DockerBackend
from .inprocess import InProcessBackend

BACKENDS = {
    "docker": DockerBackend,
    "inprocess": InProcessBackend,
}


def get_backend(name: str) -> ProvisionBackend:
    factory = BACKENDS.get(name)
    if factory is None:
        raise ValidationError(
            "Unknown provisioning backend.",
            hint=f"Use one of: {', '.join(sorted(BACKENDS))}.",
            context={"backend": name},
        )
    return factory()


__all__ = [
    "BACKENDS",
    "DockerBackend",
    "InProcessBackend",
    "ProvisionBackend",
    "discard_after_failure",
    "get_backend",
]
