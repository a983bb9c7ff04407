"""Static environment definition files.

A definition file is JSON::

    {
      "label": "builder",
      "toolchain": {"distribution": "go", "version": "1.21", "os_variant": "alpine"},
      "packages": ["git", "make", "protoc", "protobuf-dev"],
      "context_root": "/app",
      "layers": [
        {"name": "tools", "version": "1", "packages": [], "commands": [["go", "version"]]}
      ],
      "policy": {"network_mode": "online", "require_frozen_lock": false}
    }

Every key is optional; omitted keys fall back to the reference environment.
Unknown keys are rejected so typos cannot silently change a build.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from buildenv.errors import ValidationError
from buildenv.models import (
    DEFAULT_CONTEXT_ROOT,
    DEFAULT_STAGE_LABEL,
    ContextRoot,
    DependencyLayer,
    EnvironmentDefinition,
    PackageSet,
    StageLabel,
    ToolchainSpec,
)
from buildenv.policy import Policy

DEFAULT_CONFIG_FILENAME = "buildenv.json"

REFERENCE_PACKAGES: tuple[str, ...] = ("git", "make", "protoc", "protobuf-dev")

_TOP_LEVEL_KEYS = frozenset({"label", "toolchain", "packages", "context_root", "layers", "policy"})
_TOOLCHAIN_KEYS = frozenset({"distribution", "version", "os_variant", "digest"})
_LAYER_KEYS = frozenset({"name", "version", "packages", "commands", "go_module_files"})
_POLICY_KEYS = frozenset({"network_mode", "require_frozen_lock"})


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    definition: EnvironmentDefinition
    policy: Policy = field(default_factory=Policy)
    source: Path | None = None


def default_environment() -> EnvironmentDefinition:
    """Go 1.21 on Alpine with git, make, protoc and protobuf headers under /app."""
    return EnvironmentDefinition(
        toolchain=ToolchainSpec(distribution="go", version="1.21", os_variant="alpine"),
        packages=PackageSet(names=REFERENCE_PACKAGES),
        context_root=ContextRoot(DEFAULT_CONTEXT_ROOT),
        label=StageLabel(DEFAULT_STAGE_LABEL),
    )


def load_environment(path: str | Path) -> EnvironmentConfig:
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ValidationError(
            "Environment definition file does not exist.",
            hint=f"Create {DEFAULT_CONFIG_FILENAME} or pass --config.",
            context={"path": str(config_path)},
        ) from exc
    config = parse_environment(raw)
    return EnvironmentConfig(definition=config.definition, policy=config.policy, source=config_path)


def parse_environment(raw: str) -> EnvironmentConfig:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid environment definition JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ValidationError("Environment definition must be a JSON object.")
    _reject_unknown(payload, _TOP_LEVEL_KEYS, section="definition")

    reference = default_environment()
    toolchain = reference.toolchain
    if "toolchain" in payload:
        toolchain = _parse_toolchain(_section(payload, "toolchain"))
    packages = reference.packages
    if "packages" in payload:
        packages = PackageSet(names=_string_list(payload["packages"], key="packages"))
    layers = tuple(
        _parse_layer(item, index=index)
        for index, item in enumerate(_list(payload.get("layers", []), key="layers"))
    )
    context_root = _string(payload.get("context_root", DEFAULT_CONTEXT_ROOT), key="context_root")
    label = _string(payload.get("label", DEFAULT_STAGE_LABEL), key="label")
    definition = EnvironmentDefinition(
        toolchain=toolchain,
        packages=packages,
        context_root=ContextRoot(context_root),
        label=StageLabel(label),
        layers=layers,
    )
    policy = Policy()
    if "policy" in payload:
        policy = _parse_policy(_section(payload, "policy"))
    return EnvironmentConfig(definition=definition, policy=policy)


def dump_environment(definition: EnvironmentDefinition, policy: Policy | None = None) -> str:
    payload: dict[str, Any] = {
        "label": definition.label.name,
        "toolchain": definition.toolchain.to_dict(),
        "packages": list(definition.packages.names),
        "context_root": definition.context_root.path,
        "layers": [layer.to_dict() for layer in definition.layers],
    }
    if payload["toolchain"]["digest"] is None:
        del payload["toolchain"]["digest"]
    if policy is not None:
        payload["policy"] = {
            "network_mode": policy.network_mode,
            "require_frozen_lock": policy.require_frozen_lock,
        }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _parse_toolchain(section: dict[str, Any]) -> ToolchainSpec:
    _reject_unknown(section, _TOOLCHAIN_KEYS, section="toolchain")
    digest = section.get("digest")
    return ToolchainSpec(
        distribution=_string(section.get("distribution", "go"), key="toolchain.distribution"),
        version=_string(section.get("version", ""), key="toolchain.version"),
        os_variant=_string(section.get("os_variant", "alpine"), key="toolchain.os_variant"),
        digest=None if digest is None else _string(digest, key="toolchain.digest"),
    )


def _parse_layer(item: Any, *, index: int) -> DependencyLayer:
    key = f"layers[{index}]"
    if not isinstance(item, dict):
        raise ValidationError("Dependency layer must be a JSON object.", context={"key": key})
    _reject_unknown(item, _LAYER_KEYS, section=key)
    commands = tuple(
        _string_list(argv, key=f"{key}.commands[{position}]")
        for position, argv in enumerate(_list(item.get("commands", []), key=f"{key}.commands"))
    )
    return DependencyLayer(
        name=_string(item.get("name", ""), key=f"{key}.name"),
        version=_string(item.get("version", ""), key=f"{key}.version"),
        packages=PackageSet(names=_string_list(item.get("packages", []), key=f"{key}.packages")),
        commands=commands,
        go_module_files=_string_list(item.get("go_module_files", []), key=f"{key}.go_module_files"),
    )


def _parse_policy(section: dict[str, Any]) -> Policy:
    _reject_unknown(section, _POLICY_KEYS, section="policy")
    network_mode = section.get("network_mode", "online")
    if network_mode not in ("online", "offline"):
        raise ValidationError(
            "Invalid policy network mode.",
            hint="Use 'online' or 'offline'.",
            context={"network_mode": str(network_mode)},
        )
    require_frozen_lock = section.get("require_frozen_lock", False)
    if not isinstance(require_frozen_lock, bool):
        raise ValidationError(
            "Invalid policy `require_frozen_lock` value.",
            context={"require_frozen_lock": str(require_frozen_lock)},
        )
    return Policy(require_frozen_lock=require_frozen_lock, network_mode=network_mode)


def _reject_unknown(payload: dict[str, Any], allowed: frozenset[str], *, section: str) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(
            "Unknown keys in environment definition.",
            hint=f"Allowed keys: {', '.join(sorted(allowed))}.",
            context={"section": section, "keys": ",".join(unknown)},
        )


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise ValidationError(f"Environment definition `{key}` must be an object.")
    return value


def _list(value: Any, *, key: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValidationError(f"Environment definition `{key}` must be a list.")
    return value


def _string(value: Any, *, key: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Environment definition `{key}` must be a string.")
    return value


def _string_list(value: Any, *, key: str) -> tuple[str, ...]:
    items = _list(value, key=key)
    if not all(isinstance(item, str) for item in items):
        raise ValidationError(f"Environment definition `{key}` must contain only strings.")
    return tuple(items)
