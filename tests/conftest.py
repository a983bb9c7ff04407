"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildenv.backends.inprocess import InProcessBackend
from buildenv.config import default_environment
from buildenv.environment import BuildEnvironment


@pytest.fixture
def inprocess_backend() -> InProcessBackend:
    """Provide an in-process backend for tests that call provision()."""
    return InProcessBackend()


@pytest.fixture
def reference_environment(tmp_path: Path, inprocess_backend: InProcessBackend) -> BuildEnvironment:
    """Go 1.21 on Alpine with git, make, protoc and protobuf-dev under /app."""
    return BuildEnvironment.from_definition(
        default_environment(),
        build_dir=tmp_path / "build",
        backend=inprocess_backend,
    )
