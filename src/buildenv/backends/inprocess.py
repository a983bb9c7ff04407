"""In-process provisioning backend for testing and dry runs.

Simulates a container filesystem and package manager without invoking any
external tools. Image ids are content digests of the simulated layer, so two
runs over the same definition commit identical ids. Suitable for:
- Unit tests that exercise the provisioning state machine
- Development environments without a container engine
- Failure injection (missing toolchains, uninstallable packages, occupied paths)
"""

from __future__ import annotations

import hashlib
import json
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from buildenv.errors import BackendExecutionError, PackageInstallFailed, ToolchainUnavailable
from buildenv.models import PathInspection, StageLabel, ToolchainSpec
from buildenv.package_managers import PackageManager

# Directory entries per path; None marks a regular file.
SimulatedTree = dict[str, tuple[str, ...] | None]


@dataclass(frozen=True, slots=True)
class SimulatedImage:
    image_id: str
    base: str
    packages: tuple[str, ...]
    tree: Mapping[str, tuple[str, ...] | None]
    workdir: str
    metadata: Mapping[str, str]


@dataclass(slots=True)
class InProcessBackend:
    """Backend that provisions a simulated environment in-process."""

    name: str = "inprocess"
    unavailable_toolchains: frozenset[str] = frozenset()
    unavailable_packages: frozenset[str] = frozenset()
    base_tree: Mapping[str, tuple[str, ...] | None] = field(default_factory=dict)
    # Tag -> resolved reference; unlisted tags resolve to a digest of the tag itself
    toolchain_digests: Mapping[str, str] = field(default_factory=dict)
    install_attempts: list[str] = field(default_factory=list)
    commands: list[tuple[str, ...]] = field(default_factory=list)
    images: dict[str, SimulatedImage] = field(default_factory=dict)
    discarded: int = 0
    _base: str | None = field(default=None, init=False, repr=False)
    _packages: list[str] = field(default_factory=list, init=False, repr=False)
    _tree: SimulatedTree = field(default_factory=dict, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._base is not None

    def resolve_toolchain(self, toolchain: ToolchainSpec) -> str:
        image_ref = toolchain.image_ref
        if image_ref in self.unavailable_toolchains:
            raise ToolchainUnavailable(
                "Toolchain image is not available.",
                image_ref=image_ref,
                hint="Check that the pinned version is published for this OS variant.",
                context={"backend": self.name, "version": toolchain.version},
            )
        if image_ref in self.toolchain_digests:
            return self.toolchain_digests[image_ref]
        digest = hashlib.sha256(image_ref.encode()).hexdigest()
        return f"{toolchain.repository}@sha256:{digest}"

    def fetch_toolchain(self, toolchain: ToolchainSpec) -> str:
        resolved = self.resolve_toolchain(toolchain)
        self._open(base=resolved, packages=(), tree=self.base_tree)
        return resolved

    def resume(self, image_id: str) -> None:
        image = self.images.get(image_id)
        if image is None:
            raise BackendExecutionError(
                "Unknown image id.",
                hint="Resume only from images committed by this backend.",
                context={"backend": self.name, "image_id": image_id},
            )
        self._open(base=image.image_id, packages=image.packages, tree=image.tree)

    def install_package(self, package: str, *, manager: PackageManager) -> None:
        self._ensure_open("install_package")
        self.install_attempts.append(package)
        self.commands.append(manager.install_argv(package))
        if package in self.unavailable_packages:
            raise PackageInstallFailed(
                "Package could not be installed.",
                package=package,
                hint="Check the package name for this OS variant's repositories.",
                context={"backend": self.name, "manager": manager.name},
            )
        if package not in self._packages:
            self._packages.append(package)

    def run(self, argv: tuple[str, ...], *, cwd: str | None = None) -> None:
        self._ensure_open("run")
        self.commands.append(tuple(argv))

    def copy_into(self, sources: tuple[Path, ...], destination: str) -> None:
        self._ensure_open("copy_into")
        self.make_directory(destination)
        for source in sources:
            if not source.is_file():
                raise BackendExecutionError(
                    "Copy source does not exist.",
                    context={"backend": self.name, "source": str(source)},
                )
            self._add_entry(destination, source.name)
            self._tree[posixpath.join(destination, source.name)] = None

    def inspect_path(self, path: str) -> PathInspection:
        self._ensure_open("inspect_path")
        if path not in self._tree:
            return PathInspection(kind="missing")
        entries = self._tree[path]
        if entries is None:
            return PathInspection(kind="file")
        return PathInspection(kind="directory", entries=tuple(sorted(entries)))

    def make_directory(self, path: str) -> None:
        self._ensure_open("make_directory")
        current = "/"
        for segment in [part for part in path.split("/") if part]:
            parent = current
            current = posixpath.join(current, segment)
            if self._tree.get(current, ()) is None:
                raise BackendExecutionError(
                    "Cannot create directory over an existing file.",
                    context={"backend": self.name, "path": current},
                )
            self._tree.setdefault(current, ())
            self._add_entry(parent, segment)

    def commit(
        self,
        *,
        label: StageLabel,
        workdir: str,
        metadata: Mapping[str, str],
    ) -> str:
        base = self._ensure_open("commit")
        tree = {
            path: None if entries is None else list(entries)
            for path, entries in sorted(self._tree.items())
        }
        payload = {
            "base": base,
            "packages": list(self._packages),
            "tree": tree,
            "workdir": workdir,
            "label": label.name,
            "metadata": dict(sorted(metadata.items())),
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        image_id = "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        self.images[image_id] = SimulatedImage(
            image_id=image_id,
            base=base,
            packages=tuple(self._packages),
            tree=dict(self._tree),
            workdir=workdir,
            metadata=dict(metadata),
        )
        self._close()
        return image_id

    def discard(self) -> None:
        if self.is_open:
            self.discarded += 1
        self._close()

    def _open(
        self,
        *,
        base: str,
        packages: tuple[str, ...],
        tree: Mapping[str, tuple[str, ...] | None],
    ) -> None:
        if self.is_open:
            raise BackendExecutionError(
                "A working environment is already open.",
                hint="Commit or discard it before starting another.",
                context={"backend": self.name},
            )
        self._base = base
        self._packages = list(packages)
        self._tree = {"/": ()}
        self._tree.update(tree)

    def _close(self) -> None:
        self._base = None
        self._packages = []
        self._tree = {}

    def _add_entry(self, directory: str, name: str) -> None:
        entries = self._tree.get(directory) or ()
        if name not in entries:
            self._tree[directory] = (*entries, name)

    def _ensure_open(self, operation: str) -> str:
        if self._base is None:
            raise BackendExecutionError(
                "No working environment is open.",
                hint="Call fetch_toolchain() or resume() first.",
                context={"backend": self.name, "operation": operation},
            )
        return self._base
