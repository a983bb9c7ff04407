"""Structured logging for provisioning runs.

The provisioner logs one record when a step starts and one when its state is
reached; the latter carries ``duration_ms`` in ``extra``. Failures are logged
at ``level="error"`` with the error code and context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)

    def log(
        self,
        *,
        operation: str,
        state: str | None,
        label: str | None,
        backend: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "state": state,
            "label": label,
            "backend": backend,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)

    def records_for_label(self, label: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("label") == label]

    def records_for_state(self, state: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("state") == state]

    def errors(self) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("level") == "error"]

    def failure_for(self, label: str) -> dict[str, Any] | None:
        failures = [
            record for record in self.records_for_label(label) if record["level"] == "error"
        ]
        return failures[-1] if failures else None

    def state_durations(self, label: str) -> dict[str, float]:
        """Milliseconds each reached state took for ``label``, in pipeline order."""
        durations: dict[str, float] = {}
        for record in self.records_for_label(label):
            extra = record.get("extra") or {}
            if record["level"] == "info" and "duration_ms" in extra:
                durations[record["state"]] = extra["duration_ms"]
        return durations

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path
