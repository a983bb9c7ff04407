"""Command-line interface for the build-environment provisioner.

Usage:
    buildenv emit [-o build/Dockerfile]
    buildenv lock [-o build/buildenv.lock] [--backend docker|inprocess] [--no-resolve]
    buildenv provision [--backend docker|inprocess] [--frozen] [--report FILE]
    buildenv show
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from buildenv.backends import BACKENDS
from buildenv.config import (
    DEFAULT_CONFIG_FILENAME,
    EnvironmentConfig,
    default_environment,
    dump_environment,
    load_environment,
)
from buildenv.environment import BuildEnvironment
from buildenv.errors import BuildEnvError
from buildenv.policy import Policy


def cmd_emit(args: argparse.Namespace) -> int:
    env = _environment(args)
    emission = env.emit_dockerfile(args.output)
    print(f"Wrote {emission.path} (stages: {', '.join(emission.stages)})")
    return 0


def cmd_lock(args: argparse.Namespace) -> int:
    env = _environment(args)
    lock_path = env.lock(args.output, resolve=not args.no_resolve)
    print(f"Wrote {lock_path}")
    return 0


def cmd_provision(args: argparse.Namespace) -> int:
    env = _environment(args)
    try:
        artifact = env.provision(frozen=args.frozen)
        derived = env.extend(source_dir=args.source_dir) if args.with_layers else ()
    finally:
        report_path = env.write_report(args.report)
    print(
        json.dumps(
            {
                "label": artifact.label.name,
                "image_id": artifact.image_id,
                "toolchain": artifact.resolved_toolchain,
                "packages": list(artifact.packages),
                "context_root": artifact.context_root.path,
                "layers": {item.label.name: item.image_id for item in derived},
                "report": str(report_path),
            },
            indent=2,
            sort_keys=True,
        ),
    )
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    config = _load_config(args)
    sys.stdout.write(dump_environment(config.definition, config.policy))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildenv",
        description="Provision the base Go build environment",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Environment definition file (default: ./{DEFAULT_CONFIG_FILENAME} if present)",
    )
    parser.add_argument("--build-dir", type=Path, default=Path("build"), help="Output directory")
    sub = parser.add_subparsers(dest="command", required=True)

    emit_p = sub.add_parser("emit", help="Render the environment as a Dockerfile")
    emit_p.add_argument("-o", "--output", type=Path, default=None, help="Dockerfile path")
    emit_p.set_defaults(handler=cmd_emit)

    lock_p = sub.add_parser("lock", help="Write the environment lockfile")
    lock_p.add_argument("-o", "--output", type=Path, default=None, help="Lockfile path")
    lock_p.add_argument("--backend", choices=sorted(BACKENDS), default="docker")
    lock_p.add_argument(
        "--no-resolve",
        action="store_true",
        help="Do not pin the toolchain tag to its current digest",
    )
    lock_p.set_defaults(handler=cmd_lock)

    provision_p = sub.add_parser("provision", help="Provision and label the environment")
    provision_p.add_argument("--backend", choices=sorted(BACKENDS), default="docker")
    provision_p.add_argument("--frozen", action="store_true", help="Require a current lockfile")
    provision_p.add_argument("--report", type=Path, default=None, help="Report JSON path")
    provision_p.add_argument(
        "--with-layers",
        action="store_true",
        help="Apply dependency layers after labeling",
    )
    provision_p.add_argument(
        "--source-dir",
        type=Path,
        default=Path("."),
        help="Directory holding Go module files for dependency layers",
    )
    provision_p.set_defaults(handler=cmd_provision)

    show_p = sub.add_parser("show", help="Print the resolved environment definition")
    show_p.set_defaults(handler=cmd_show)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.handler(args)
    except BuildEnvError as exc:
        print(json.dumps(exc.to_dict(), indent=2, sort_keys=True), file=sys.stderr)
        return 1


def _load_config(args: argparse.Namespace) -> EnvironmentConfig:
    if args.config is not None:
        return load_environment(args.config)
    default_path = Path(DEFAULT_CONFIG_FILENAME)
    if default_path.is_file():
        return load_environment(default_path)
    return EnvironmentConfig(definition=default_environment(), policy=Policy())


def _environment(args: argparse.Namespace) -> BuildEnvironment:
    config = _load_config(args)
    return BuildEnvironment.from_definition(
        config.definition,
        build_dir=args.build_dir,
        backend=getattr(args, "backend", "inprocess"),
        policy=config.policy,
    )
