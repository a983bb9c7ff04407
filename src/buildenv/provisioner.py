"""Base environment provisioning pipeline.

The provisioner walks a strict linear state machine::

    pending -> toolchain_selected -> packages_installed
            -> context_root_established -> labeled

Every operation requires the state immediately before it. Any failure discards
the backend's working environment, pins the provisioner at the last state it
reached, and re-raises with ``last_state`` in the error context. Only a
``labeled`` run yields an artifact.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from buildenv.backends.base import ProvisionBackend, discard_after_failure
from buildenv.errors import (
    BuildEnvError,
    ContextRootConflict,
    LockfileError,
    StateTransitionError,
)
from buildenv.models import (
    STATE_ORDER,
    ContextRoot,
    EnvironmentArtifact,
    PackageSet,
    ProvisionState,
    StageLabel,
    ToolchainSpec,
)
from buildenv.observability import StructuredLogger
from buildenv.package_managers import PackageManager
from buildenv.policy import Policy, ensure_network_allowed

METADATA_PREFIX = "org.buildenv"
CONFLICT_ENTRY_LIMIT = 10


def install_package_set(
    backend: ProvisionBackend,
    packages: PackageSet,
    *,
    manager: PackageManager,
    installed: list[str],
) -> None:
    """Install packages in order, one at a time, so a failure names its package."""
    if not packages:
        return
    if manager.refresh:
        backend.run(manager.refresh)
    for package in packages:
        backend.install_package(package, manager=manager)
        installed.append(package)
    cleanup = manager.cleanup_argv()
    if cleanup is not None:
        backend.run(cleanup)


def artifact_metadata(
    *,
    label: StageLabel,
    toolchain: ToolchainSpec,
    packages: tuple[str, ...],
    context_root: ContextRoot,
    definition_digest: str,
) -> dict[str, str]:
    return {
        f"{METADATA_PREFIX}.label": label.name,
        f"{METADATA_PREFIX}.toolchain": toolchain.image_ref,
        f"{METADATA_PREFIX}.packages": ",".join(packages),
        f"{METADATA_PREFIX}.context-root": context_root.path,
        f"{METADATA_PREFIX}.definition-digest": definition_digest,
    }


@dataclass(slots=True)
class Provisioner:
    backend: ProvisionBackend
    toolchain: ToolchainSpec
    packages: PackageSet
    context_root: ContextRoot
    label: StageLabel
    definition_digest: str
    policy: Policy = field(default_factory=Policy)
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    locked_toolchain: str | None = None
    _state: ProvisionState = field(default=ProvisionState.PENDING, init=False, repr=False)
    _failed: bool = field(default=False, init=False, repr=False)
    _resolved_toolchain: str | None = field(default=None, init=False, repr=False)
    _installed: list[str] = field(default_factory=list, init=False, repr=False)

    @property
    def state(self) -> ProvisionState:
        return self._state

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def installed_packages(self) -> tuple[str, ...]:
        return tuple(self._installed)

    def provision(self) -> EnvironmentArtifact:
        self.select_toolchain()
        self.install_packages()
        self.establish_context_root()
        return self.label_stage()

    def select_toolchain(self) -> str:
        with self._step("select_toolchain", ProvisionState.TOOLCHAIN_SELECTED):
            ensure_network_allowed(policy=self.policy, operation="select_toolchain")
            resolved = self.backend.fetch_toolchain(self.toolchain)
            if self.locked_toolchain is not None and resolved != self.locked_toolchain:
                raise LockfileError(
                    "Resolved toolchain differs from the lockfile.",
                    hint="The toolchain tag moved upstream; re-run env.lock() to accept it.",
                    context={
                        "image_ref": self.toolchain.image_ref,
                        "expected": self.locked_toolchain,
                        "actual": resolved,
                    },
                )
            self._resolved_toolchain = resolved
        return resolved

    def install_packages(self) -> tuple[str, ...]:
        manager = self.toolchain.package_manager
        with self._step(
            "install_packages",
            ProvisionState.PACKAGES_INSTALLED,
            extra={"manager": manager.name, "packages": list(self.packages.names)},
        ):
            install_package_set(
                self.backend,
                self.packages,
                manager=manager,
                installed=self._installed,
            )
        return self.installed_packages

    def establish_context_root(self) -> ContextRoot:
        path = self.context_root.path
        with self._step(
            "establish_context_root",
            ProvisionState.CONTEXT_ROOT_ESTABLISHED,
            extra={"path": path},
        ):
            existing = self.backend.inspect_path(path)
            if existing.kind == "file":
                raise ContextRootConflict(
                    "Build context root is occupied by a file.",
                    path=path,
                    hint="Choose a context root that does not exist in the toolchain image.",
                )
            if existing.entries:
                raise ContextRootConflict(
                    "Build context root already contains files.",
                    path=path,
                    hint="Choose an empty or missing directory for the context root.",
                    context={"entries": ",".join(existing.entries[:CONFLICT_ENTRY_LIMIT])},
                )
            self.backend.make_directory(path)
            created = self.backend.inspect_path(path)
            if not created.is_empty_directory:
                raise ContextRootConflict(
                    "Build context root is not an empty directory after creation.",
                    path=path,
                    context={"kind": created.kind, "entries": ",".join(created.entries)},
                )
        return self.context_root

    def label_stage(self) -> EnvironmentArtifact:
        with self._step("label_stage", ProvisionState.LABELED):
            packages = self.installed_packages
            image_id = self.backend.commit(
                label=self.label,
                workdir=self.context_root.path,
                metadata=artifact_metadata(
                    label=self.label,
                    toolchain=self.toolchain,
                    packages=packages,
                    context_root=self.context_root,
                    definition_digest=self.definition_digest,
                ),
            )
        return EnvironmentArtifact(
            label=self.label,
            toolchain=self.toolchain,
            resolved_toolchain=self._resolved_toolchain or self.toolchain.image_ref,
            packages=packages,
            context_root=self.context_root,
            image_id=image_id,
            definition_digest=self.definition_digest,
            backend=self.backend.name,
        )

    @contextmanager
    def _step(
        self,
        operation: str,
        target: ProvisionState,
        *,
        extra: dict[str, object] | None = None,
    ) -> Iterator[None]:
        self._ensure_transition(operation, target)
        self._log(operation, message=f"Starting {operation}.", extra=extra)
        started = time.perf_counter()
        try:
            yield
        except BaseException as exc:
            self._fail(operation, exc)
            raise
        self._state = target
        self._log(
            operation,
            message=f"Reached {target.value}.",
            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 3)},
        )

    def _ensure_transition(self, operation: str, target: ProvisionState) -> None:
        required = STATE_ORDER[STATE_ORDER.index(target) - 1]
        if self._failed:
            raise StateTransitionError(
                "Provisioner already failed and cannot continue.",
                hint="Start a new provisioning run; failed runs are not resumable.",
                context={"operation": operation, "last_state": self._state.value},
            )
        if self._state != required:
            raise StateTransitionError(
                "Provisioning step called out of order.",
                hint=f"{operation} requires state {required.value}.",
                context={
                    "operation": operation,
                    "current_state": self._state.value,
                    "required_state": required.value,
                },
            )

    def _fail(self, operation: str, exc: BaseException) -> None:
        self._failed = True
        if isinstance(exc, BuildEnvError):
            exc.context.setdefault("last_state", self._state.value)
        discard_after_failure(self.backend, exc)
        if isinstance(exc, BuildEnvError):
            extra: dict[str, object] = {"code": exc.code, "context": dict(exc.context)}
        else:
            extra = {"exception": type(exc).__name__, "last_state": self._state.value}
        self._log(
            operation,
            message="Provisioning failed; working environment discarded.",
            level="error",
            extra=extra,
        )

    def _log(
        self,
        operation: str,
        *,
        message: str,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            state=self._state.value,
            label=self.label.name,
            backend=self.backend.name,
            message=message,
            level=level,
            extra=extra,
        )
