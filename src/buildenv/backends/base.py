"""Protocol for provisioning execution backends."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from buildenv.errors import BuildEnvError
from buildenv.models import PathInspection, StageLabel, ToolchainSpec
from buildenv.package_managers import PackageManager


class ProvisionBackend(Protocol):
    """One working environment at a time, committed or discarded as a whole."""

    name: str

    def resolve_toolchain(self, toolchain: ToolchainSpec) -> str:
        """Return the content-addressed reference the toolchain tag currently points at."""

    def fetch_toolchain(self, toolchain: ToolchainSpec) -> str:
        """Fetch the toolchain image, open a working environment on it, return its resolved reference."""

    def resume(self, image_id: str) -> None:
        """Open a working environment on top of a previously committed image."""

    def install_package(self, package: str, *, manager: PackageManager) -> None:
        """Install one package, raising PackageInstallFailed on failure."""

    def run(self, argv: tuple[str, ...], *, cwd: str | None = None) -> None:
        """Run a command inside the working environment."""

    def copy_into(self, sources: tuple[Path, ...], destination: str) -> None:
        """Copy host files into a directory of the working environment."""

    def inspect_path(self, path: str) -> PathInspection:
        """Report whether a path is missing, a file, or a directory with entries."""

    def make_directory(self, path: str) -> None:
        """Create a directory (and parents) inside the working environment."""

    def commit(
        self,
        *,
        label: StageLabel,
        workdir: str,
        metadata: Mapping[str, str],
    ) -> str:
        """Freeze the working environment into an immutable image and return its id."""

    def discard(self) -> None:
        """Drop the working environment without committing it."""


def discard_after_failure(backend: ProvisionBackend, error: BaseException) -> None:
    """Discard the working environment without masking ``error``.

    A cleanup failure is attached to the original error: as ``discard_error``
    in a ``BuildEnvError`` context, or as an exception note otherwise.
    """
    try:
        backend.discard()
    except BuildEnvError as cleanup:
        detail = f"{cleanup.code}: {cleanup.args[0]}"
        if isinstance(error, BuildEnvError):
            error.context["discard_error"] = detail
        else:
            error.add_note(f"discard failed: {detail}")
