"""Dependency layers applied on top of a labeled base environment.

A layer never mutates its parent: the backend opens a fresh working
environment from the parent's image, applies the layer, and commits it under
``<parent>-<layer>``. Layer contents are supplied by the consuming build
definition.
"""

from __future__ import annotations

from pathlib import Path

from buildenv.backends.base import ProvisionBackend, discard_after_failure
from buildenv.errors import BuildEnvError, StateTransitionError, ValidationError
from buildenv.models import DependencyLayer, DerivedArtifact, EnvironmentArtifact, ProvisionState
from buildenv.observability import StructuredLogger
from buildenv.provisioner import METADATA_PREFIX, install_package_set

GO_MODULE_DOWNLOAD: tuple[str, ...] = ("go", "mod", "download")


def apply_layer(
    *,
    backend: ProvisionBackend,
    artifact: EnvironmentArtifact,
    layer: DependencyLayer,
    source_dir: Path,
    logger: StructuredLogger | None = None,
) -> DerivedArtifact:
    if artifact.state != ProvisionState.LABELED:
        raise StateTransitionError(
            "Dependency layers can only extend a labeled artifact.",
            context={
                "layer": layer.name,
                "label": artifact.label.name,
                "current_state": artifact.state.value,
            },
        )
    module_sources = _module_sources(layer, source_dir)
    label = artifact.label.derive(layer.name)
    root = artifact.context_root.path
    log = logger if logger is not None else StructuredLogger()
    log.log(
        operation="apply_layer",
        state=artifact.state.value,
        label=label.name,
        backend=backend.name,
        message="Applying dependency layer.",
        extra={"parent": artifact.label.name, "layer": layer.name, "version": layer.version},
    )

    backend.resume(artifact.image_id)
    try:
        if module_sources:
            backend.copy_into(module_sources, root)
            backend.run(GO_MODULE_DOWNLOAD, cwd=root)
        installed: list[str] = []
        install_package_set(
            backend,
            layer.packages,
            manager=artifact.toolchain.package_manager,
            installed=installed,
        )
        for argv in layer.commands:
            backend.run(argv, cwd=root)
        image_id = backend.commit(
            label=label,
            workdir=root,
            metadata={
                f"{METADATA_PREFIX}.label": label.name,
                f"{METADATA_PREFIX}.parent": artifact.label.name,
                f"{METADATA_PREFIX}.parent-image": artifact.image_id,
                f"{METADATA_PREFIX}.layer": layer.name,
                f"{METADATA_PREFIX}.layer-version": layer.version,
            },
        )
    except BaseException as exc:
        discard_after_failure(backend, exc)
        if isinstance(exc, BuildEnvError):
            extra: dict[str, object] = {"code": exc.code, "context": dict(exc.context)}
        else:
            extra = {"exception": type(exc).__name__}
        log.log(
            operation="apply_layer",
            state=artifact.state.value,
            label=label.name,
            backend=backend.name,
            message="Dependency layer failed; working environment discarded.",
            level="error",
            extra=extra,
        )
        raise

    log.log(
        operation="apply_layer",
        state=artifact.state.value,
        label=label.name,
        backend=backend.name,
        message="Dependency layer committed.",
        extra={"image_id": image_id},
    )
    return DerivedArtifact(
        label=label,
        parent=artifact.label,
        layer=layer,
        context_root=artifact.context_root,
        image_id=image_id,
        backend=backend.name,
    )


def _module_sources(layer: DependencyLayer, source_dir: Path) -> tuple[Path, ...]:
    sources = tuple(source_dir / name for name in layer.go_module_files)
    missing = [str(path) for path in sources if not path.is_file()]
    if missing:
        raise ValidationError(
            "Go module files for dependency layer are missing.",
            hint="Pass source_dir pointing at the module root.",
            context={"layer": layer.name, "missing": ",".join(missing)},
        )
    return sources
