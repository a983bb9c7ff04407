import json
from pathlib import Path

import pytest

from buildenv.config import (
    default_environment,
    dump_environment,
    load_environment,
    parse_environment,
)
from buildenv.errors import ValidationError
from buildenv.policy import Policy


def test_empty_definition_falls_back_to_reference_environment() -> None:
    config = parse_environment("{}")

    assert config.definition == default_environment()
    assert config.policy == Policy()


def test_definition_overrides_selected_fields() -> None:
    config = parse_environment(
        json.dumps(
            {
                "label": "go-base",
                "toolchain": {"version": "1.22.4", "os_variant": "bookworm"},
                "packages": ["git", "git", "make"],
                "context_root": "/src/",
                "layers": [{"name": "tools", "version": "1", "commands": [["go", "version"]]}],
                "policy": {"network_mode": "offline", "require_frozen_lock": True},
            }
        )
    )

    definition = config.definition
    assert definition.label.name == "go-base"
    assert definition.toolchain.image_ref == "golang:1.22.4-bookworm"
    assert definition.packages.names == ("git", "make")
    assert definition.context_root.path == "/src"
    assert definition.layers[0].commands == (("go", "version"),)
    assert config.policy == Policy(require_frozen_lock=True, network_mode="offline")


def test_toolchain_section_requires_pinned_version() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_environment(json.dumps({"toolchain": {"os_variant": "alpine"}}))

    assert excinfo.value.context["version"] == ""


@pytest.mark.parametrize(
    "payload",
    [
        {"labels": "builder"},
        {"toolchain": {"version": "1.21", "tag": "latest"}},
        {"layers": [{"name": "tools", "version": "1", "run": "go version"}]},
        {"policy": {"offline": True}},
    ],
)
def test_unknown_keys_are_rejected(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_environment(json.dumps(payload))

    assert "Unknown keys" in str(excinfo.value)


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        json.dumps({"packages": "git"}),
        json.dumps({"packages": ["git", 1]}),
        json.dumps({"toolchain": "1.21"}),
        json.dumps({"policy": {"network_mode": "airgapped"}}),
        json.dumps({"policy": {"require_frozen_lock": "yes"}}),
        json.dumps({"toolchain": {"version": "latest"}}),
    ],
)
def test_invalid_definitions_are_rejected(payload: str) -> None:
    with pytest.raises(ValidationError):
        parse_environment(payload)


def test_dump_round_trips_through_parse() -> None:
    definition = default_environment()

    dumped = dump_environment(definition, Policy())

    assert parse_environment(dumped).definition == definition
    assert "digest" not in json.loads(dumped)["toolchain"]


def test_load_environment_records_source(tmp_path: Path) -> None:
    path = tmp_path / "buildenv.json"
    path.write_text(json.dumps({"packages": ["git"]}), encoding="utf-8")

    config = load_environment(path)

    assert config.source == path
    assert config.definition.packages.names == ("git",)


def test_load_environment_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError) as excinfo:
        load_environment(tmp_path / "missing.json")

    assert excinfo.value.hint is not None
