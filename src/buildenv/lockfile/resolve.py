"""Lockfile resolution helpers."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from buildenv.lockfile.model import LockedToolchain, Lockfile

LOCKFILE_VERSION = 1


def definition_digest(definition: dict[str, Any]) -> str:
    canonical = json.dumps(definition, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_lockfile(
    *,
    definition: dict[str, Any],
    resolved_toolchain: str | None = None,
) -> Lockfile:
    toolchain = definition.get("toolchain", {})
    image_ref = toolchain.get("image_ref", "") if isinstance(toolchain, dict) else ""
    packages = definition.get("packages", [])
    if not isinstance(packages, list) or not all(isinstance(item, str) for item in packages):
        packages = []

    return Lockfile(
        version=LOCKFILE_VERSION,
        definition_digest=definition_digest(definition),
        definition=definition,
        toolchain=LockedToolchain(image_ref=str(image_ref), resolved=resolved_toolchain),
        packages=list(packages),
    )
