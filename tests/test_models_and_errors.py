import pytest

from buildenv.errors import (
    BackendExecutionError,
    ContextRootConflict,
    ErrorCode,
    LockfileError,
    PackageInstallFailed,
    PolicyError,
    StateTransitionError,
    ToolchainUnavailable,
    ValidationError,
)
from buildenv.models import ContextRoot, DependencyLayer, PackageSet, StageLabel, ToolchainSpec
from buildenv.package_managers import APK, APT


def test_error_codes_are_stable_and_machine_readable() -> None:
    errors = [
        ValidationError("bad input"),
        ToolchainUnavailable("no image", image_ref="golang:1.99-alpine"),
        PackageInstallFailed("no package", package="protoc"),
        ContextRootConflict("occupied", path="/app"),
        StateTransitionError("out of order"),
        LockfileError("lock mismatch"),
        BackendExecutionError("backend failed"),
        PolicyError("not allowed"),
    ]
    assert [error.code for error in errors] == [
        ErrorCode.VALIDATION.value,
        ErrorCode.TOOLCHAIN_UNAVAILABLE.value,
        ErrorCode.PACKAGE_INSTALL.value,
        ErrorCode.CONTEXT_ROOT_CONFLICT.value,
        ErrorCode.STATE_TRANSITION.value,
        ErrorCode.LOCKFILE.value,
        ErrorCode.BACKEND_EXECUTION.value,
        ErrorCode.POLICY.value,
    ]


def test_domain_errors_expose_diagnostic_fields() -> None:
    install = PackageInstallFailed("no package", package="protoc", context={"manager": "apk"})
    toolchain = ToolchainUnavailable("no image", image_ref="golang:1.99-alpine")
    conflict = ContextRootConflict("occupied", path="/app", hint="pick another path")

    assert install.package == "protoc"
    assert install.context == {"package": "protoc", "manager": "apk"}
    assert toolchain.image_ref == "golang:1.99-alpine"
    assert conflict.to_dict() == {
        "code": "E_CONTEXT_ROOT_CONFLICT",
        "message": "occupied\nHint: pick another path\n  path: /app",
        "context": {"path": "/app"},
        "hint": "pick another path",
    }


def test_reference_toolchain_resolves_image_reference() -> None:
    toolchain = ToolchainSpec(distribution="go", version="1.21", os_variant="alpine")

    assert toolchain.image_ref == "golang:1.21-alpine"
    assert toolchain.package_manager is APK


def test_toolchain_digest_is_appended_to_image_reference() -> None:
    digest = "sha256:" + "a" * 64
    toolchain = ToolchainSpec(version="1.21.5", os_variant="bookworm", digest=digest)

    assert toolchain.image_ref == f"golang:1.21.5-bookworm@{digest}"
    assert toolchain.package_manager is APT


@pytest.mark.parametrize("version", ["latest", "LATEST", "stable", "", "1", "1.x", "1.*", "go1.21"])
def test_unpinned_toolchain_versions_are_rejected(version: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        ToolchainSpec(version=version)

    assert excinfo.value.context["version"] == version


@pytest.mark.parametrize("version", ["1.21", "1.21.5", "1.22rc1"])
def test_pinned_toolchain_versions_are_accepted(version: str) -> None:
    assert ToolchainSpec(version=version).version == version


def test_toolchain_rejects_unknown_distribution_and_os_variant() -> None:
    with pytest.raises(ValidationError):
        ToolchainSpec(distribution="rust")
    with pytest.raises(ValidationError) as excinfo:
        ToolchainSpec(os_variant="windowsservercore")
    assert excinfo.value.context == {"os_variant": "windowsservercore"}


def test_toolchain_rejects_malformed_digest() -> None:
    with pytest.raises(ValidationError):
        ToolchainSpec(digest="md5:abc")


def test_package_set_keeps_first_occurrence_order() -> None:
    packages = PackageSet.of("git", "make", "git", "protoc", "make")

    assert packages.names == ("git", "make", "protoc")
    assert len(packages) == 3
    assert "protoc" in packages
    assert list(packages.extended(["protoc", "protobuf-dev"])) == [
        "git",
        "make",
        "protoc",
        "protobuf-dev",
    ]


@pytest.mark.parametrize("name", ["", "git make", "git;rm", "$(id)", "-f"])
def test_package_set_rejects_unsafe_names(name: str) -> None:
    with pytest.raises(ValidationError):
        PackageSet.of("git", name)


def test_context_root_is_normalized_and_validated() -> None:
    assert ContextRoot("/app/").path == "/app"
    assert ContextRoot("//srv//build").path == "/srv/build"
    for invalid in ("app", "/", "/app/../etc", "/./app"):
        with pytest.raises(ValidationError):
            ContextRoot(invalid)


def test_stage_label_validation_and_derivation() -> None:
    label = StageLabel("builder")

    assert str(label) == "builder"
    assert label.derive("tools") == StageLabel("builder-tools")
    with pytest.raises(ValidationError):
        StageLabel("Builder")


def test_dependency_layer_requires_version_and_relative_module_files() -> None:
    with pytest.raises(ValidationError):
        DependencyLayer(name="tools", version="")
    with pytest.raises(ValidationError):
        DependencyLayer(name="tools", version="1", go_module_files=("/etc/go.mod",))
    with pytest.raises(ValidationError):
        DependencyLayer(name="tools", version="1", commands=((),))
