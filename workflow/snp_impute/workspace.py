from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import get_logger


logger = get_logger()

DEFAULT_OUTPUT_ROOT = "Output"
RUN_HISTORY_DIR = "run_history"


class WorkspaceError(RuntimeError):
    """Raised when the run directory cannot be created."""


@dataclass(frozen=True)
class RunWorkspace:
    """Directory owning every dataset generation and artifact of one run."""

    root: Path
    run_id: str

    @property
    def path(self) -> Path:
        return self.root / self.run_id

    @property
    def history_dir(self) -> Path:
        return self.path / RUN_HISTORY_DIR

    def file(self, name: str) -> Path:
        return self.path / name


def create_workspace(output_root: Path | str, run_id: str) -> RunWorkspace:
    """Create ``<output_root>/<run_id>``; safe to call again for the same run.

    Existing content is left untouched, nothing is ever cleaned up.
    """
    workspace = RunWorkspace(root=Path(output_root).expanduser().resolve(), run_id=run_id)
    target = workspace.path
    if target.exists() and not target.is_dir():
        raise WorkspaceError(f"Cannot create run directory {target}: a file with that name exists")
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkspaceError(f"Cannot create run directory {target}: {exc}") from exc
    logger.info("Run directory: %s", target)
    return workspace
