"""Lockfile typed model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class LockedToolchain:
    image_ref: str
    resolved: str | None = None


@dataclass(frozen=True, slots=True)
class Lockfile:
    version: int
    definition_digest: str
    definition: dict[str, Any]
    toolchain: LockedToolchain
    packages: list[str] = field(default_factory=list)
