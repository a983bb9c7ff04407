"""Core environment object for build-environment recipe declarations."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from .backends import InProcessBackend, ProvisionBackend, get_backend
from .compiler import DockerfileEmission, emit_dockerfile
from .errors import LockfileError, StateTransitionError, ValidationError
from .layers import apply_layer
from .lockfile import Lockfile, build_lockfile, definition_digest, read_lockfile, write_lockfile
from .models import (
    ContextRoot,
    DependencyLayer,
    DerivedArtifact,
    EnvironmentArtifact,
    EnvironmentDefinition,
    PackageSet,
    StageLabel,
    ToolchainSpec,
)
from .observability import StructuredLogger
from .policy import Policy, ensure_network_allowed, ensure_provision_policy
from .provisioner import Provisioner


@dataclass(slots=True)
class BuildEnvironment:
    """Represents a base build-environment recipe."""

    build_dir: Path = field(default_factory=lambda: Path("build"))
    toolchain: ToolchainSpec = field(default_factory=ToolchainSpec)
    context_root: ContextRoot = field(default_factory=ContextRoot)
    label: StageLabel = field(default_factory=StageLabel)
    backend: ProvisionBackend | str = field(default_factory=InProcessBackend)
    policy: Policy = field(default_factory=Policy)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _packages: list[str] = field(default_factory=list, init=False, repr=False)
    _layers: list[DependencyLayer] = field(default_factory=list, init=False, repr=False)
    _last_artifact: EnvironmentArtifact | None = field(default=None, init=False, repr=False)
    _last_provisioner: Provisioner | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.build_dir = Path(self.build_dir)
        if isinstance(self.backend, str):
            self.backend = get_backend(self.backend)

    @classmethod
    def from_definition(
        cls,
        definition: EnvironmentDefinition,
        *,
        build_dir: str | Path = "build",
        backend: ProvisionBackend | str = "inprocess",
        policy: Policy | None = None,
    ) -> Self:
        env = cls(
            build_dir=Path(build_dir),
            toolchain=definition.toolchain,
            context_root=definition.context_root,
            label=definition.label,
            backend=backend,
            policy=policy or Policy(),
        )
        if definition.packages:
            env.install(*definition.packages.names)
        for layer in definition.layers:
            env.add_layer(layer)
        return env

    @property
    def provision_backend(self) -> ProvisionBackend:
        if isinstance(self.backend, str):
            self.backend = get_backend(self.backend)
        return self.backend

    @property
    def last_artifact(self) -> EnvironmentArtifact | None:
        return self._last_artifact

    def use_toolchain(
        self,
        version: str,
        *,
        distribution: str = "go",
        os_variant: str = "alpine",
        digest: str | None = None,
    ) -> Self:
        self.toolchain = ToolchainSpec(
            distribution=distribution,
            version=version,
            os_variant=os_variant,
            digest=digest,
        )
        return self

    def install(self, *packages: str) -> Self:
        if not packages:
            raise ValidationError("install() requires at least one package.")
        # Validates names and drops duplicates before they reach the recipe.
        merged = PackageSet(names=tuple(self._packages)).extended(packages)
        self._packages = list(merged.names)
        return self

    def set_context_root(self, path: str) -> Self:
        self.context_root = ContextRoot(path)
        return self

    def set_label(self, name: str) -> Self:
        self.label = StageLabel(name)
        return self

    def set_policy(self, policy: Policy) -> Self:
        self.policy = policy
        return self

    def layer(
        self,
        name: str,
        *,
        version: str,
        packages: Iterable[str] = (),
        commands: Iterable[Iterable[str]] = (),
        go_module_files: Iterable[str] = (),
    ) -> Self:
        return self.add_layer(
            DependencyLayer(
                name=name,
                version=version,
                packages=PackageSet(names=tuple(packages)),
                commands=tuple(tuple(argv) for argv in commands),
                go_module_files=tuple(go_module_files),
            ),
        )

    def add_layer(self, layer: DependencyLayer) -> Self:
        if any(existing.name == layer.name for existing in self._layers):
            raise ValidationError(
                "Dependency layer names must be unique.",
                context={"layer": layer.name},
            )
        self._layers.append(layer)
        return self

    def definition(self) -> EnvironmentDefinition:
        return EnvironmentDefinition(
            toolchain=self.toolchain,
            packages=PackageSet(names=tuple(self._packages)),
            context_root=self.context_root,
            label=self.label,
            layers=tuple(self._layers),
        )

    def digest(self) -> str:
        return definition_digest(self.definition().to_dict())

    def lock(self, path: str | Path | None = None, *, resolve: bool = True) -> Path:
        """Write the lockfile, pinning the toolchain tag to the digest it resolves to now."""
        lock_path = self._normalize_path(path, fallback=self._default_lock_path())
        resolved = self._resolve_toolchain() if resolve else None
        lock = build_lockfile(definition=self.definition().to_dict(), resolved_toolchain=resolved)
        return write_lockfile(lock, lock_path)

    def emit_dockerfile(self, path: str | Path | None = None) -> DockerfileEmission:
        destination = self._normalize_path(path, fallback=self.build_dir / "Dockerfile")
        return emit_dockerfile(self.definition(), destination)

    def provision(self, *, frozen: bool = False) -> EnvironmentArtifact:
        ensure_provision_policy(policy=self.policy, frozen=frozen)
        locked_toolchain = self._assert_frozen_lock().toolchain.resolved if frozen else None
        definition = self.definition()
        provisioner = Provisioner(
            backend=self.provision_backend,
            toolchain=definition.toolchain,
            packages=definition.packages,
            context_root=definition.context_root,
            label=definition.label,
            definition_digest=definition_digest(definition.to_dict()),
            policy=self.policy,
            logger=self.logger,
            locked_toolchain=locked_toolchain,
        )
        self._last_provisioner = provisioner
        self._last_artifact = None
        artifact = provisioner.provision()
        self._last_artifact = artifact
        return artifact

    def extend(
        self,
        artifact: EnvironmentArtifact | None = None,
        *,
        source_dir: str | Path = ".",
    ) -> tuple[DerivedArtifact, ...]:
        base = artifact if artifact is not None else self._last_artifact
        if base is None:
            raise StateTransitionError(
                "No labeled artifact is available to extend.",
                hint="Run provision() before extend().",
                context={"operation": "extend", "label": self.label.name},
            )
        return tuple(
            apply_layer(
                backend=self.provision_backend,
                artifact=base,
                layer=layer,
                source_dir=Path(source_dir),
                logger=self.logger,
            )
            for layer in self._layers
        )

    def write_report(self, path: str | Path | None = None) -> Path:
        report_path = self._normalize_path(
            path,
            fallback=self.build_dir / self.label.name / "report.json",
        )
        provisioner = self._last_provisioner
        artifact = self._last_artifact
        payload: dict[str, object] = {
            "label": self.label.name,
            "definition_digest": self.digest(),
            "state": provisioner.state.value if provisioner is not None else "pending",
            "failed": provisioner.failed if provisioner is not None else False,
            "artifact": None
            if artifact is None
            else {
                "image_id": artifact.image_id,
                "backend": artifact.backend,
                "toolchain": artifact.toolchain.image_ref,
                "resolved_toolchain": artifact.resolved_toolchain,
                "packages": list(artifact.packages),
                "context_root": artifact.context_root.path,
            },
            "durations_ms": self.logger.state_durations(self.label.name),
            "failure": self.logger.failure_for(self.label.name),
            "logs": self.logger.records,
        }
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return report_path

    def _normalize_path(self, path: str | Path | None, *, fallback: Path) -> Path:
        if path is None:
            return fallback
        return Path(path)

    def _default_lock_path(self) -> Path:
        return self.build_dir / "buildenv.lock"

    def _resolve_toolchain(self) -> str:
        artifact = self._last_artifact
        if artifact is not None and artifact.toolchain == self.toolchain:
            return artifact.resolved_toolchain
        ensure_network_allowed(policy=self.policy, operation="lock")
        return self.provision_backend.resolve_toolchain(self.toolchain)

    def _assert_frozen_lock(self) -> Lockfile:
        lock_path = self._default_lock_path()
        lock = read_lockfile(lock_path)
        current_digest = self.digest()
        if lock.definition_digest != current_digest:
            raise LockfileError(
                "Frozen provisioning lockfile is stale for current definition.",
                hint="Re-run env.lock() and commit the updated lockfile.",
                context={
                    "operation": "provision",
                    "mode": "frozen",
                    "expected": current_digest,
                    "actual": lock.definition_digest,
                    "path": str(lock_path),
                },
            )
        return lock
