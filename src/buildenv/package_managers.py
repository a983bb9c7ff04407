"""System package manager command rendering per OS variant.

Commands are rendered as argv tuples so backends can execute them without a
shell, and as Dockerfile ``RUN`` bodies so emitted build files match what a
backend would do.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from buildenv.errors import ValidationError

ALPINE_VARIANT = re.compile(r"^alpine(?:\d+\.\d+)?$")
DEBIAN_VARIANTS = frozenset({"bookworm", "bullseye", "trixie"})


@dataclass(frozen=True, slots=True)
class PackageManager:
    name: str
    install: tuple[str, ...]
    refresh: tuple[str, ...] = ()
    cleanup: str | None = None

    def install_argv(self, *packages: str) -> tuple[str, ...]:
        return (*self.install, *packages)

    def cleanup_argv(self) -> tuple[str, ...] | None:
        if self.cleanup is None:
            return None
        return ("sh", "-c", self.cleanup)

    def render_run(self, packages: tuple[str, ...]) -> str:
        """Render a single Dockerfile RUN body that leaves no index cache behind."""
        install_line = " ".join(self.install)
        continued = " \\\n".join([install_line, *(f"    {package}" for package in packages)])
        steps: list[str] = []
        if self.refresh:
            steps.append(" ".join(self.refresh))
        steps.append(continued)
        if self.cleanup:
            steps.append(self.cleanup)
        return " && \\\n    ".join(steps) if len(steps) > 1 else continued


APK = PackageManager(
    name="apk",
    install=("apk", "add", "--no-cache"),
)

APT = PackageManager(
    name="apt",
    install=("apt-get", "install", "-y", "--no-install-recommends"),
    refresh=("apt-get", "update"),
    cleanup="rm -rf /var/lib/apt/lists/*",
)


def package_manager_for(os_variant: str) -> PackageManager:
    if ALPINE_VARIANT.fullmatch(os_variant):
        return APK
    if os_variant in DEBIAN_VARIANTS:
        return APT
    raise ValidationError(
        "Unsupported toolchain OS variant.",
        hint="Use an alpine variant (e.g. 'alpine', 'alpine3.19') or one of: "
        + ", ".join(sorted(DEBIAN_VARIANTS))
        + ".",
        context={"os_variant": os_variant},
    )
