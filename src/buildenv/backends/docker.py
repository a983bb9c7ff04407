"""Container-engine provisioning via the ``docker`` CLI.

Each provisioning run works in one throwaway container: the toolchain image is
pulled and started with an idle entrypoint, packages and commands run through
``docker exec``, and ``docker commit`` freezes the result under the stage
label. The container is removed on commit and on any failure, so a failed run
never leaves a usable image behind. A container that cannot be removed after
a successful commit is recorded in ``stale_containers``.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from buildenv.errors import BackendExecutionError, PackageInstallFailed, ToolchainUnavailable
from buildenv.models import PathInspection, StageLabel, ToolchainSpec
from buildenv.package_managers import PackageManager

from .base import discard_after_failure

# Prints the path kind on the first line, then one directory entry per line.
INSPECT_SCRIPT = (
    'if [ -d "$1" ]; then echo directory; ls -A "$1"; '
    'elif [ -e "$1" ]; then echo file; '
    "else echo missing; fi"
)

STDERR_LIMIT = 2000


@dataclass(slots=True)
class DockerBackend:
    name: str = "docker"
    executable: str = "docker"
    repository: str = "buildenv"
    timeout: float | None = None
    extra_create_args: list[str] = field(default_factory=list)
    stale_containers: list[str] = field(default_factory=list)
    _container: str | None = field(default=None, init=False, repr=False)

    def resolve_toolchain(self, toolchain: ToolchainSpec) -> str:
        self._ensure_prerequisites()
        image_ref = toolchain.image_ref
        pulled = self._invoke(("pull", "--quiet", image_ref), operation="fetch_toolchain")
        if pulled.returncode != 0:
            raise ToolchainUnavailable(
                "Toolchain image could not be pulled.",
                image_ref=image_ref,
                hint="Check that the pinned version is published for this OS variant.",
                context={
                    "backend": self.name,
                    "version": toolchain.version,
                    "os_variant": toolchain.os_variant,
                    "stderr": _truncate(pulled.stderr),
                },
            )
        inspected = self._invoke(
            ("image", "inspect", "--format", "{{index .RepoDigests 0}}", image_ref),
            operation="fetch_toolchain",
        )
        resolved = inspected.stdout.strip() if inspected.returncode == 0 else ""
        return resolved or image_ref

    def fetch_toolchain(self, toolchain: ToolchainSpec) -> str:
        resolved = self.resolve_toolchain(toolchain)
        self._start(resolved)
        return resolved

    def resume(self, image_id: str) -> None:
        self._ensure_prerequisites()
        self._start(image_id)

    def install_package(self, package: str, *, manager: PackageManager) -> None:
        container = self._ensure_open("install_package")
        argv = manager.install_argv(package)
        result = self._invoke(("exec", container, *argv), operation="install_package")
        if result.returncode != 0:
            raise PackageInstallFailed(
                "Package could not be installed.",
                package=package,
                hint="Check the package name for this OS variant's repositories.",
                context={
                    "backend": self.name,
                    "manager": manager.name,
                    "command": " ".join(argv),
                    "stderr": _truncate(result.stderr),
                },
            )

    def run(self, argv: tuple[str, ...], *, cwd: str | None = None) -> None:
        container = self._ensure_open("run")
        workdir_args: tuple[str, ...] = ("--workdir", cwd) if cwd is not None else ()
        self._check(("exec", *workdir_args, container, *argv), operation="run")

    def copy_into(self, sources: tuple[Path, ...], destination: str) -> None:
        container = self._ensure_open("copy_into")
        self.make_directory(destination)
        for source in sources:
            if not source.is_file():
                raise BackendExecutionError(
                    "Copy source does not exist.",
                    context={"backend": self.name, "source": str(source)},
                )
            target = f"{container}:{destination.rstrip('/')}/{source.name}"
            self._check(("cp", str(source), target), operation="copy_into")

    def inspect_path(self, path: str) -> PathInspection:
        container = self._ensure_open("inspect_path")
        result = self._check(
            ("exec", container, "sh", "-c", INSPECT_SCRIPT, "sh", path),
            operation="inspect_path",
        )
        lines = [line for line in result.stdout.splitlines() if line]
        kind = lines[0] if lines else "missing"
        if kind == "directory":
            return PathInspection(kind="directory", entries=tuple(sorted(lines[1:])))
        if kind == "file":
            return PathInspection(kind="file")
        return PathInspection(kind="missing")

    def make_directory(self, path: str) -> None:
        container = self._ensure_open("make_directory")
        self._check(("exec", container, "mkdir", "-p", path), operation="make_directory")

    def commit(
        self,
        *,
        label: StageLabel,
        workdir: str,
        metadata: Mapping[str, str],
    ) -> str:
        container = self._ensure_open("commit")
        changes: list[str] = [
            f"WORKDIR {workdir}",
            "ENTRYPOINT []",
            'CMD ["/bin/sh"]',
        ]
        for key, value in sorted(metadata.items()):
            changes.append(f'LABEL "{key}"="{_escape_label(value)}"')
        change_args: list[str] = []
        for change in changes:
            change_args.extend(["--change", change])
        tag = f"{self.repository}:{label.name}"
        try:
            result = self._check(
                ("commit", *change_args, container, tag),
                operation="commit",
            )
        except BaseException as exc:
            discard_after_failure(self, exc)
            raise
        try:
            self.discard()
        except BackendExecutionError:
            # The image is already committed; only the idle container is left.
            self.stale_containers.append(container)
        return result.stdout.strip() or tag

    def discard(self) -> None:
        if self._container is None:
            return
        container = self._container
        self._container = None
        # A non-zero exit leaves only an idle container; nothing is tagged by removal.
        self._invoke(("rm", "--force", container), operation="discard")

    def _start(self, image: str) -> None:
        if self._container is not None:
            raise BackendExecutionError(
                "A working container is already open.",
                hint="Commit or discard it before starting another.",
                context={"backend": self.name, "container": self._container},
            )
        created = self._check(
            (
                "create",
                *self.extra_create_args,
                "--entrypoint",
                "sleep",
                image,
                "infinity",
            ),
            operation="create",
        )
        container = created.stdout.strip()
        self._container = container
        try:
            self._check(("start", container), operation="start")
        except BackendExecutionError as exc:
            discard_after_failure(self, exc)
            raise

    def _ensure_open(self, operation: str) -> str:
        if self._container is None:
            raise BackendExecutionError(
                "No working container is open.",
                hint="Call fetch_toolchain() or resume() first.",
                context={"backend": self.name, "operation": operation},
            )
        return self._container

    def _ensure_prerequisites(self) -> None:
        if shutil.which(self.executable) is None:
            raise BackendExecutionError(
                f"Docker backend requires `{self.executable}` in PATH.",
                hint="Install a container engine CLI or use the in-process backend.",
                context={"backend": self.name, "operation": "prepare"},
            )

    def _check(
        self,
        args: tuple[str, ...],
        *,
        operation: str,
    ) -> subprocess.CompletedProcess[str]:
        result = self._invoke(args, operation=operation)
        if result.returncode != 0:
            raise BackendExecutionError(
                f"{self.executable} {args[0]} failed.",
                hint="Check the container engine output for details.",
                context={
                    "backend": self.name,
                    "operation": operation,
                    "returncode": str(result.returncode),
                    "stderr": _truncate(result.stderr),
                    "command": " ".join((self.executable, *args)),
                },
            )
        return result

    def _invoke(
        self,
        args: tuple[str, ...],
        *,
        operation: str,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.executable, *args]
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise BackendExecutionError(
                f"{self.executable} {args[0]} timed out.",
                hint="Raise the backend timeout or check registry connectivity.",
                context={
                    "backend": self.name,
                    "operation": operation,
                    "timeout": str(self.timeout),
                    "command": " ".join(cmd),
                },
            ) from exc
        except OSError as exc:
            raise BackendExecutionError(
                f"{self.executable} {args[0]} could not be started.",
                hint="Check that the container engine CLI is executable.",
                context={
                    "backend": self.name,
                    "operation": operation,
                    "error": str(exc),
                    "command": " ".join(cmd),
                },
            ) from exc


def _truncate(text: str | None) -> str:
    return text[:STDERR_LIMIT] if text else ""


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')
