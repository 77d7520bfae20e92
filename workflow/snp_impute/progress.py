"""JSON record of one pipeline run, rewritten after every stage transition.

``<session>.json`` holds the full run; ``latest.json`` points at the most
recent session of the run directory so a rerun can see where the last one
stopped.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import ensure_parent


STAGE_STATUSES = ("planned", "running", "completed", "skipped", "failed")


def _stamp(dt: Optional[datetime] = None) -> str:
    return (dt or datetime.now()).isoformat(timespec="seconds")


@dataclass
class StageRecord:
    stage: str
    status: str
    tool: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    exit_code: Optional[int] = None
    message: Optional[str] = None
    _started: Optional[datetime] = field(default=None, repr=False)

    def close(self, status: str, exit_code: Optional[int], message: Optional[str]) -> None:
        finished = datetime.now()
        self.status = status
        self.finished_at = _stamp(finished)
        if self._started is not None:
            self.duration_seconds = round((finished - self._started).total_seconds(), 2)
            self._started = None
        if exit_code is not None:
            self.exit_code = exit_code
        if message and not self.message:
            self.message = message

    def to_json(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None and not key.startswith("_")}


class ProgressLog:
    def __init__(
        self,
        path: Path,
        *,
        session: str,
        run_id: str,
        dry_run: bool,
        run_order: List[str],
        started_at: Optional[datetime] = None,
    ) -> None:
        self.path = path
        self.latest_path = path.parent / "latest.json"
        self.session = session
        self.run_id = run_id
        self.dry_run = dry_run
        self.run_order = list(run_order)
        self.started_at = _stamp(started_at)
        self.finished_at: Optional[str] = None
        self.status = "running"
        self.message: Optional[str] = None
        self.records: List[StageRecord] = []
        self._write()

    @property
    def last_completed_stage(self) -> Optional[str]:
        for record in reversed(self.records):
            if record.status in {"completed", "skipped"}:
                return record.stage
        return None

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "session": self.session,
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "status": self.status,
            "run_order": self.run_order,
            "stages": [record.to_json() for record in self.records],
        }
        for key in ("finished_at", "message", "last_completed_stage"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def _write(self) -> None:
        data = self.snapshot()
        latest = {key: data[key] for key in ("session", "status", "started_at", "finished_at", "last_completed_stage") if key in data}
        latest["progress_file"] = self.path.name
        for target, payload in ((self.path, data), (self.latest_path, latest)):
            ensure_parent(target)
            tmp = target.with_name(f"{target.name}.tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(target)

    def _open_record(self, stage: str) -> StageRecord:
        for record in reversed(self.records):
            if record.stage == stage and record.status == "running":
                return record
        raise KeyError(f"Stage {stage!r} is not running")

    def plan_stage(self, stage: str, tool: Optional[str]) -> None:
        self.records.append(StageRecord(stage, "planned", tool=tool))
        self._write()

    def start_stage(self, stage: str) -> None:
        started = datetime.now()
        self.records.append(StageRecord(stage, "running", started_at=_stamp(started), _started=started))
        self._write()

    def complete_stage(
        self,
        stage: str,
        *,
        status: str = "completed",
        exit_code: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        if status not in STAGE_STATUSES:
            raise ValueError(f"Unknown stage status {status!r}")
        self._open_record(stage).close(status, exit_code, message)
        self._write()

    def fail_stage(self, stage: str, *, exit_code: Optional[int] = None, message: Optional[str] = None) -> None:
        self.complete_stage(stage, status="failed", exit_code=exit_code, message=message)

    def finish(self, *, status: str, message: Optional[str] = None) -> None:
        self.status = status
        self.finished_at = _stamp()
        self.message = message or None
        # Anything still running when the run ends has failed.
        for record in self.records:
            if record.status == "running":
                record.close("failed", None, message)
        self._write()
