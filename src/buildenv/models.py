"""Core typed dataclasses for environment definitions and provisioning results."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from buildenv.errors import ValidationError
from buildenv.package_managers import PackageManager, package_manager_for

DEFAULT_CONTEXT_ROOT = "/app"
DEFAULT_STAGE_LABEL = "builder"

# Distribution name -> registry repository
DISTRIBUTION_REPOSITORIES: dict[str, str] = {
    "go": "golang",
    "golang": "golang",
}

FLOATING_VERSIONS = frozenset({"latest", "stable", "edge", "tip", "master", "main"})

PINNED_VERSION_PATTERN = re.compile(r"^\d+\.\d+(?:\.\d+)?(?:(?:rc|beta)\d+)?$")
DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
PACKAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9+._:=~-]*$")
STAGE_LABEL_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")

PathKind = Literal["missing", "directory", "file"]


class ProvisionState(StrEnum):
    """Finite states of the provisioning pipeline."""

    PENDING = "pending"
    TOOLCHAIN_SELECTED = "toolchain_selected"
    PACKAGES_INSTALLED = "packages_installed"
    CONTEXT_ROOT_ESTABLISHED = "context_root_established"
    LABELED = "labeled"


STATE_ORDER: tuple[ProvisionState, ...] = (
    ProvisionState.PENDING,
    ProvisionState.TOOLCHAIN_SELECTED,
    ProvisionState.PACKAGES_INSTALLED,
    ProvisionState.CONTEXT_ROOT_ESTABLISHED,
    ProvisionState.LABELED,
)


def is_pinned_version(version: str) -> bool:
    return bool(PINNED_VERSION_PATTERN.fullmatch(version))


@dataclass(frozen=True, slots=True)
class ToolchainSpec:
    """Pinned compiler distribution, version, and OS variant."""

    distribution: str = "go"
    version: str = "1.21"
    os_variant: str = "alpine"
    digest: str | None = None

    def __post_init__(self) -> None:
        if self.distribution not in DISTRIBUTION_REPOSITORIES:
            raise ValidationError(
                "Unsupported toolchain distribution.",
                hint=f"Use one of: {', '.join(sorted(DISTRIBUTION_REPOSITORIES))}.",
                context={"distribution": self.distribution},
            )
        if self.digest is not None and not DIGEST_PATTERN.fullmatch(self.digest):
            raise ValidationError(
                "Toolchain digest must be a sha256 content digest.",
                hint="Use the form sha256:<64 hex characters>.",
                context={"digest": self.digest},
            )
        if not self.version or self.version.lower() in FLOATING_VERSIONS:
            raise ValidationError(
                "Toolchain version must be pinned.",
                hint="Floating tags resolve to different toolchains over time; pin e.g. '1.21'.",
                context={"distribution": self.distribution, "version": self.version},
            )
        if not is_pinned_version(self.version):
            raise ValidationError(
                "Toolchain version is not a pinned release number.",
                hint="Use at least major.minor, e.g. '1.21' or '1.21.5'.",
                context={"distribution": self.distribution, "version": self.version},
            )
        package_manager_for(self.os_variant)

    @property
    def package_manager(self) -> PackageManager:
        return package_manager_for(self.os_variant)

    @property
    def repository(self) -> str:
        return DISTRIBUTION_REPOSITORIES[self.distribution]

    @property
    def tag(self) -> str:
        return f"{self.version}-{self.os_variant}"

    @property
    def image_ref(self) -> str:
        ref = f"{self.repository}:{self.tag}"
        if self.digest is not None:
            ref = f"{ref}@{self.digest}"
        return ref

    def to_dict(self) -> dict[str, object]:
        return {
            "distribution": self.distribution,
            "version": self.version,
            "os_variant": self.os_variant,
            "digest": self.digest,
        }


@dataclass(frozen=True, slots=True)
class PackageSet:
    """Ordered, deduplicated set of system package names."""

    names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in self.names:
            if not name or not PACKAGE_NAME_PATTERN.fullmatch(name):
                raise ValidationError(
                    "Invalid package name.",
                    hint="Package names must be non-empty and contain no whitespace or shell syntax.",
                    context={"package": name},
                )
        # First occurrence wins
        object.__setattr__(self, "names", tuple(dict.fromkeys(self.names)))

    @classmethod
    def of(cls, *names: str) -> PackageSet:
        return cls(names=tuple(names))

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def extended(self, names: Iterable[str]) -> PackageSet:
        return PackageSet(names=(*self.names, *names))


@dataclass(frozen=True, slots=True)
class ContextRoot:
    """Canonical working directory where source is introduced later."""

    path: str = DEFAULT_CONTEXT_ROOT

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            raise ValidationError(
                "Build context root must be an absolute path.",
                context={"path": self.path},
            )
        segments = [segment for segment in self.path.split("/") if segment]
        if not segments:
            raise ValidationError(
                "Build context root cannot be the filesystem root.",
                context={"path": self.path},
            )
        if any(segment in {".", ".."} for segment in segments):
            raise ValidationError(
                "Build context root must not contain relative segments.",
                context={"path": self.path},
            )
        object.__setattr__(self, "path", "/" + "/".join(segments))

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True, slots=True)
class StageLabel:
    """Identifier downstream stages use to reference a provisioned environment."""

    name: str = DEFAULT_STAGE_LABEL

    def __post_init__(self) -> None:
        if not STAGE_LABEL_PATTERN.fullmatch(self.name):
            raise ValidationError(
                "Invalid stage label.",
                hint="Use lowercase letters, digits, '.', '_' or '-'.",
                context={"label": self.name},
            )

    def __str__(self) -> str:
        return self.name

    def derive(self, suffix: str) -> StageLabel:
        return StageLabel(f"{self.name}-{suffix}")


@dataclass(frozen=True, slots=True)
class PathInspection:
    kind: PathKind
    entries: tuple[str, ...] = ()

    @property
    def is_empty_directory(self) -> bool:
        return self.kind == "directory" and not self.entries


@dataclass(frozen=True, slots=True)
class DependencyLayer:
    """Consumer-supplied, versioned dependencies applied on top of a labeled stage."""

    name: str
    version: str
    packages: PackageSet = field(default_factory=PackageSet)
    commands: tuple[tuple[str, ...], ...] = ()
    go_module_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not STAGE_LABEL_PATTERN.fullmatch(self.name):
            raise ValidationError(
                "Invalid dependency layer name.",
                hint="Use lowercase letters, digits, '.', '_' or '-'.",
                context={"layer": self.name},
            )
        if not self.version:
            raise ValidationError(
                "Dependency layers must carry a version.",
                context={"layer": self.name},
            )
        for argv in self.commands:
            if not argv:
                raise ValidationError(
                    "Dependency layer commands require a non-empty argv.",
                    context={"layer": self.name},
                )
        for module_file in self.go_module_files:
            if not module_file or module_file.startswith("/") or ".." in module_file.split("/"):
                raise ValidationError(
                    "Go module files must be relative paths inside the build context.",
                    context={"layer": self.name, "file": module_file},
                )

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "version": self.version,
            "packages": list(self.packages.names),
            "commands": [list(argv) for argv in self.commands],
            "go_module_files": list(self.go_module_files),
        }


@dataclass(frozen=True, slots=True)
class EnvironmentArtifact:
    """Immutable, labeled output of a successful provisioning run."""

    label: StageLabel
    toolchain: ToolchainSpec
    resolved_toolchain: str
    packages: tuple[str, ...]
    context_root: ContextRoot
    image_id: str
    definition_digest: str
    backend: str
    state: ProvisionState = ProvisionState.LABELED


@dataclass(frozen=True, slots=True)
class DerivedArtifact:
    """Result of applying a dependency layer on top of a labeled artifact."""

    label: StageLabel
    parent: StageLabel
    layer: DependencyLayer
    context_root: ContextRoot
    image_id: str
    backend: str


@dataclass(frozen=True, slots=True)
class EnvironmentDefinition:
    """Immutable snapshot of a build environment recipe."""

    toolchain: ToolchainSpec = field(default_factory=ToolchainSpec)
    packages: PackageSet = field(default_factory=PackageSet)
    context_root: ContextRoot = field(default_factory=ContextRoot)
    label: StageLabel = field(default_factory=StageLabel)
    layers: tuple[DependencyLayer, ...] = ()

    def __post_init__(self) -> None:
        names = [layer.name for layer in self.layers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValidationError(
                "Dependency layer names must be unique.",
                context={"layers": ",".join(duplicates)},
            )

    def to_dict(self) -> dict[str, object]:
        return {
            "toolchain": {**self.toolchain.to_dict(), "image_ref": self.toolchain.image_ref},
            "packages": list(self.packages.names),
            "context_root": self.context_root.path,
            "label": self.label.name,
            "layers": [layer.to_dict() for layer in self.layers],
        }
