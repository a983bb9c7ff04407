import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from buildenv.backends.docker import DockerBackend
from buildenv.errors import (
    BackendExecutionError,
    ContextRootConflict,
    PackageInstallFailed,
    ToolchainUnavailable,
)
from buildenv.models import ContextRoot, PackageSet, ProvisionState, StageLabel, ToolchainSpec
from buildenv.provisioner import Provisioner

CONTAINER = "c0ffee"


@dataclass
class FakeDocker:
    """Records docker CLI invocations and answers them like a cooperative engine."""

    missing_images: set[str] = field(default_factory=set)
    failing_packages: set[str] = field(default_factory=set)
    existing_paths: dict[str, list[str]] = field(default_factory=dict)
    rm_times_out: bool = False
    unlaunchable_verbs: set[str] = field(default_factory=set)
    calls: list[list[str]] = field(default_factory=list)

    def __call__(self, cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        self.calls.append(cmd)
        args = cmd[1:]
        verb = args[0]
        if verb in self.unlaunchable_verbs:
            raise PermissionError(13, "Permission denied", cmd[0])
        if verb == "rm" and self.rm_times_out:
            raise subprocess.TimeoutExpired(cmd, timeout=5)
        if verb == "pull":
            if args[-1] in self.missing_images:
                return _result(cmd, returncode=1, stderr="manifest unknown")
            return _result(cmd)
        if verb == "image":
            return _result(cmd, stdout="golang@sha256:abc123\n")
        if verb == "create":
            return _result(cmd, stdout=f"{CONTAINER}\n")
        if verb == "commit":
            return _result(cmd, stdout="sha256:deadbeef\n")
        if verb == "exec":
            return self._exec(cmd, args[1:])
        return _result(cmd)

    def _exec(self, cmd: list[str], args: list[str]) -> subprocess.CompletedProcess[str]:
        if args[0] == "--workdir":
            args = args[2:]
        argv = args[1:]
        if argv[:2] == ["apk", "add"] and argv[-1] in self.failing_packages:
            stderr = f"ERROR: unable to select packages: {argv[-1]}"
            return _result(cmd, returncode=1, stderr=stderr)
        if argv[:2] == ["mkdir", "-p"]:
            self.existing_paths.setdefault(argv[-1], [])
            return _result(cmd)
        if argv[:2] == ["sh", "-c"]:
            path = argv[-1]
            if path not in self.existing_paths:
                return _result(cmd, stdout="missing\n")
            return _result(cmd, stdout="\n".join(["directory", *self.existing_paths[path]]) + "\n")
        return _result(cmd)

    def verbs(self) -> list[str]:
        return [call[1] for call in self.calls]


@pytest.fixture
def fake_docker(monkeypatch: pytest.MonkeyPatch) -> FakeDocker:
    fake = FakeDocker()
    monkeypatch.setattr("buildenv.backends.docker.shutil.which", lambda _: "/usr/bin/docker")
    monkeypatch.setattr("buildenv.backends.docker.subprocess.run", fake)
    return fake


def test_docker_backend_provisions_reference_environment(fake_docker: FakeDocker) -> None:
    provisioner = _provisioner(DockerBackend())

    artifact = provisioner.provision()

    assert artifact.image_id == "sha256:deadbeef"
    assert artifact.resolved_toolchain == "golang@sha256:abc123"
    assert artifact.backend == "docker"
    assert fake_docker.calls[0] == ["docker", "pull", "--quiet", "golang:1.21-alpine"]
    assert [
        "docker",
        "create",
        "--entrypoint",
        "sleep",
        "golang@sha256:abc123",
        "infinity",
    ] in fake_docker.calls
    installs = [call[3:] for call in fake_docker.calls if call[3:5] == ["apk", "add"]]
    assert installs == [
        ["apk", "add", "--no-cache", package]
        for package in ("git", "make", "protoc", "protobuf-dev")
    ]
    assert fake_docker.calls[-1] == ["docker", "rm", "--force", CONTAINER]


def test_docker_commit_sets_workdir_and_labels(fake_docker: FakeDocker) -> None:
    _provisioner(DockerBackend()).provision()

    (commit,) = [call for call in fake_docker.calls if call[1] == "commit"]
    changes = [commit[index + 1] for index, arg in enumerate(commit) if arg == "--change"]
    assert changes[:3] == ["WORKDIR /app", "ENTRYPOINT []", 'CMD ["/bin/sh"]']
    assert 'LABEL "org.buildenv.label"="builder"' in changes
    assert commit[-2:] == [CONTAINER, "buildenv:builder"]


def test_docker_pull_failure_raises_toolchain_unavailable(fake_docker: FakeDocker) -> None:
    fake_docker.missing_images.add("golang:1.21-alpine")
    provisioner = _provisioner(DockerBackend())

    with pytest.raises(ToolchainUnavailable) as excinfo:
        provisioner.provision()

    assert excinfo.value.image_ref == "golang:1.21-alpine"
    assert excinfo.value.context["stderr"] == "manifest unknown"
    assert "create" not in fake_docker.verbs()


def test_docker_install_failure_removes_container(fake_docker: FakeDocker) -> None:
    fake_docker.failing_packages.add("protoc")
    provisioner = _provisioner(DockerBackend())

    with pytest.raises(PackageInstallFailed) as excinfo:
        provisioner.provision()

    assert excinfo.value.package == "protoc"
    assert "unable to select packages" in excinfo.value.context["stderr"]
    assert "commit" not in fake_docker.verbs()
    assert fake_docker.calls[-1] == ["docker", "rm", "--force", CONTAINER]


def test_docker_occupied_context_root_conflicts(fake_docker: FakeDocker) -> None:
    fake_docker.existing_paths["/app"] = ["main.go"]
    provisioner = _provisioner(DockerBackend())

    with pytest.raises(ContextRootConflict) as excinfo:
        provisioner.provision()

    assert excinfo.value.path == "/app"
    assert "commit" not in fake_docker.verbs()
    assert "mkdir" not in [arg for call in fake_docker.calls for arg in call]


def test_container_removal_failure_keeps_install_error(fake_docker: FakeDocker) -> None:
    fake_docker.failing_packages.add("protoc")
    fake_docker.rm_times_out = True
    provisioner = _provisioner(DockerBackend(timeout=5))

    with pytest.raises(PackageInstallFailed) as excinfo:
        provisioner.provision()

    assert excinfo.value.package == "protoc"
    assert excinfo.value.context["discard_error"] == "E_BACKEND_EXECUTION: docker rm timed out."
    (failure,) = provisioner.logger.errors()
    assert failure["extra"]["context"]["package"] == "protoc"
    assert failure["extra"]["context"]["discard_error"] == excinfo.value.context["discard_error"]


def test_committed_image_survives_container_removal_failure(fake_docker: FakeDocker) -> None:
    fake_docker.rm_times_out = True
    backend = DockerBackend(timeout=5)
    provisioner = _provisioner(backend)

    artifact = provisioner.provision()

    assert artifact.image_id == "sha256:deadbeef"
    assert provisioner.state == ProvisionState.LABELED
    assert not provisioner.failed
    assert backend.stale_containers == [CONTAINER]


def test_unlaunchable_cli_is_wrapped_and_container_removed(fake_docker: FakeDocker) -> None:
    fake_docker.unlaunchable_verbs.add("exec")
    provisioner = _provisioner(DockerBackend())

    with pytest.raises(BackendExecutionError) as excinfo:
        provisioner.provision()

    assert "Permission denied" in excinfo.value.context["error"]
    assert excinfo.value.context["operation"] == "install_package"
    assert provisioner.failed
    assert fake_docker.calls[-1] == ["docker", "rm", "--force", CONTAINER]


def test_resolve_toolchain_does_not_start_a_container(fake_docker: FakeDocker) -> None:
    resolved = DockerBackend().resolve_toolchain(ToolchainSpec())

    assert resolved == "golang@sha256:abc123"
    assert fake_docker.verbs() == ["pull", "image"]


def test_docker_backend_requires_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("buildenv.backends.docker.shutil.which", lambda _: None)

    with pytest.raises(BackendExecutionError) as excinfo:
        DockerBackend().fetch_toolchain(ToolchainSpec())

    assert "docker" in str(excinfo.value)
    assert excinfo.value.hint is not None


def test_docker_timeout_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    def _timeout(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.TimeoutExpired(cmd, timeout=5)

    monkeypatch.setattr("buildenv.backends.docker.shutil.which", lambda _: "/usr/bin/docker")
    monkeypatch.setattr("buildenv.backends.docker.subprocess.run", _timeout)

    with pytest.raises(BackendExecutionError) as excinfo:
        DockerBackend(timeout=5).fetch_toolchain(ToolchainSpec())

    assert excinfo.value.context["timeout"] == "5"
    assert excinfo.value.context["operation"] == "fetch_toolchain"


def test_docker_copy_into_uses_container_paths(fake_docker: FakeDocker, tmp_path: Path) -> None:
    go_mod = tmp_path / "go.mod"
    go_mod.write_text("module example.com/app\n", encoding="utf-8")
    backend = DockerBackend()
    backend.resume("sha256:deadbeef")

    backend.copy_into((go_mod,), "/app")
    backend.run(("go", "mod", "download"), cwd="/app")

    assert ["docker", "cp", str(go_mod), f"{CONTAINER}:/app/go.mod"] in fake_docker.calls
    assert fake_docker.calls[-1] == [
        "docker",
        "exec",
        "--workdir",
        "/app",
        CONTAINER,
        "go",
        "mod",
        "download",
    ]


def test_docker_operations_require_open_container() -> None:
    with pytest.raises(BackendExecutionError) as excinfo:
        DockerBackend().make_directory("/app")

    assert excinfo.value.context["operation"] == "make_directory"


def _provisioner(backend: DockerBackend) -> Provisioner:
    return Provisioner(
        backend=backend,
        toolchain=ToolchainSpec(),
        packages=PackageSet.of("git", "make", "protoc", "protobuf-dev"),
        context_root=ContextRoot(),
        label=StageLabel(),
        definition_digest="0" * 64,
    )


def _result(
    cmd: list[str],
    *,
    returncode: int = 0,
    stdout: str = "",
    stderr: str = "",
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)
