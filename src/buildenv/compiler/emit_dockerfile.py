"""Dockerfile emission for environment definitions.

The base stage is rendered as ``FROM <toolchain> AS <label>``, one package
install ``RUN`` that leaves no index cache behind, and ``WORKDIR <context
root>``. Each dependency layer becomes a follow-on stage ``FROM <label>``, so
consumers reference the base by label rather than copying it. Output is
byte-stable for a given definition.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path

from buildenv.errors import ValidationError
from buildenv.models import DependencyLayer, EnvironmentDefinition, ToolchainSpec

HEADER = "# Base Go build environment"


@dataclass(frozen=True, slots=True)
class DockerfileEmission:
    path: Path
    stages: tuple[str, ...]
    sha256: str


def render_dockerfile(definition: EnvironmentDefinition) -> str:
    toolchain = definition.toolchain
    lines: list[str] = [HEADER, f"FROM {toolchain.image_ref} AS {definition.label.name}", ""]
    if definition.packages:
        lines.extend([_render_install(toolchain, definition.packages.names), ""])
    lines.append(f"WORKDIR {definition.context_root.path}")

    for layer in definition.layers:
        lines.append("")
        lines.extend(_render_layer(definition, layer))
    return "\n".join(lines) + "\n"


def emit_dockerfile(
    definition: EnvironmentDefinition,
    destination: str | Path,
) -> DockerfileEmission:
    path = Path(destination)
    if path.is_dir():
        raise ValidationError(
            "Dockerfile destination is a directory.",
            hint="Pass a file path such as build/Dockerfile.",
            context={"path": str(path)},
        )
    content = render_dockerfile(definition)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    stages = (
        definition.label.name,
        *(definition.label.derive(layer.name).name for layer in definition.layers),
    )
    return DockerfileEmission(
        path=path,
        stages=stages,
        sha256=hashlib.sha256(content.encode("utf-8")).hexdigest(),
    )


def _render_install(toolchain: ToolchainSpec, packages: tuple[str, ...]) -> str:
    return f"RUN {toolchain.package_manager.render_run(packages)}"


def _render_layer(definition: EnvironmentDefinition, layer: DependencyLayer) -> list[str]:
    stage = definition.label.derive(layer.name).name
    lines = [
        f"# Dependency layer: {layer.name} (version {layer.version})",
        f"FROM {definition.label.name} AS {stage}",
    ]
    if layer.go_module_files:
        lines.append(f"COPY {' '.join(layer.go_module_files)} ./")
        lines.append("RUN go mod download")
    if layer.packages:
        lines.append(_render_install(definition.toolchain, layer.packages.names))
    for argv in layer.commands:
        lines.append(f"RUN {json.dumps(list(argv))}")
    return lines
