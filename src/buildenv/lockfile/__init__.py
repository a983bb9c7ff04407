"""Environment definition lockfiles."""

from .io import parse_lockfile, read_lockfile, serialize_lockfile, write_lockfile
from .model import LockedToolchain, Lockfile
from .resolve import LOCKFILE_VERSION, build_lockfile, definition_digest

__all__ = [
    "LOCKFILE_VERSION",
    "LockedToolchain",
    "Lockfile",
    "build_lockfile",
    "definition_digest",
    "parse_lockfile",
    "read_lockfile",
    "serialize_lockfile",
    "write_lockfile",
]
