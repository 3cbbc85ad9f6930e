"""Run events for commit-patch, appended as JSON lines.

Each line is ``{"ts": <float>, "run": <id>, "event": <name>, "data": {...}}``.
Events written by the orchestrator:

    transaction_started, fragments_classified, commit_succeeded,
    rollback_performed, remainder_failed, transaction_failed

Writing never raises into a transaction; an unwritable file is skipped.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import TelemetryConfig

# String values longer than this (tool output in error messages) are clipped.
MAX_VALUE_LEN = 500


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_VALUE_LEN:
        return value[:MAX_VALUE_LEN] + "..."
    return value


@dataclass(frozen=True)
class TelemetrySink:
    enabled: bool
    path: Path

    @classmethod
    def from_config(cls, config: TelemetryConfig) -> TelemetrySink:
        """Build the sink, dropping events past the retention window first."""
        sink = cls(enabled=config.enabled, path=config.path)
        if sink.enabled:
            prune_telemetry_file(sink.path, config.retention_days)
        return sink

    def log(self, run_id: str, event_type: str, data: dict[str, Any]) -> None:
        if not self.enabled:
            return

        line = json.dumps(
            {
                "ts": round(time.time(), 3),
                "run": run_id,
                "event": event_type,
                "data": {k: _clip(v) for k, v in data.items()},
            },
            ensure_ascii=False,
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            return


NULL_SINK = TelemetrySink(enabled=False, path=Path(os.devnull))


def _event_time(line: str) -> float:
    try:
        return float(json.loads(line)["ts"])
    except (ValueError, KeyError, TypeError):
        return 0.0


def prune_telemetry_file(telemetry_path: Path, retention_days: int) -> None:
    """Drop events older than ``retention_days``; unparseable lines go too.

    A retention of zero or less keeps everything.
    """
    if retention_days <= 0 or not telemetry_path.exists():
        return

    cutoff = time.time() - retention_days * 86400
    try:
        lines = telemetry_path.read_text(encoding="utf-8").splitlines()
        kept = [ln for ln in lines if _event_time(ln) >= cutoff]
        if len(kept) == len(lines):
            return
        tmp = telemetry_path.with_name(telemetry_path.name + ".tmp")
        tmp.write_text("".join(ln + "\n" for ln in kept), encoding="utf-8")
        os.replace(tmp, telemetry_path)
    except OSError:
        return
