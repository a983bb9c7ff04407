"""Lockfile parser and serializer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from buildenv.errors import LockfileError
from buildenv.lockfile.model import LockedToolchain, Lockfile


def serialize_lockfile(lockfile: Lockfile) -> str:
    payload = {
        "version": lockfile.version,
        "definition_digest": lockfile.definition_digest,
        "definition": lockfile.definition,
        "toolchain": {
            "image_ref": lockfile.toolchain.image_ref,
            "resolved": lockfile.toolchain.resolved,
        },
        "packages": list(lockfile.packages),
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def parse_lockfile(raw: str) -> Lockfile:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockfileError("Invalid lockfile JSON.", hint=str(exc)) from exc

    if not isinstance(payload, dict):
        raise LockfileError("Invalid lockfile payload type.")

    version = _required_int(payload, "version")
    digest = _required_str(payload, "definition_digest")
    definition = _required_dict(payload, "definition")
    toolchain = _parse_locked_toolchain(_required_dict(payload, "toolchain"))
    packages = payload.get("packages", [])
    if not isinstance(packages, list) or not all(isinstance(item, str) for item in packages):
        raise LockfileError("Invalid lockfile `packages` value.")
    return Lockfile(
        version=version,
        definition_digest=digest,
        definition=definition,
        toolchain=toolchain,
        packages=list(packages),
    )


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileError(
            "Lockfile does not exist.",
            hint="Run env.lock() before using frozen mode.",
            context={"path": str(lock_path)},
        ) from exc
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(serialize_lockfile(lockfile), encoding="utf-8")
    return lock_path


def _parse_locked_toolchain(item: dict[str, Any]) -> LockedToolchain:
    resolved = item.get("resolved")
    if resolved is not None and (not isinstance(resolved, str) or not resolved):
        raise LockfileError("Invalid lockfile `toolchain.resolved` value.")
    return LockedToolchain(image_ref=_required_str(item, "image_ref"), resolved=resolved)


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _required_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if not isinstance(value, int):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value


def _required_dict(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise LockfileError(f"Invalid lockfile `{key}` value.")
    return value
