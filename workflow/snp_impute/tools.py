from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from .config import ConfigError, PipelineConfig
from .utils import get_logger


logger = get_logger()


class ExternalToolError(RuntimeError):
    """Raised when an external tool exits with a nonzero status."""

    def __init__(self, tool: str, exit_code: int, stage: Optional[str] = None):
        self.tool = tool
        self.exit_code = exit_code
        self.stage = stage
        where = f" during {stage}" if stage else ""
        super().__init__(f"{tool} failed{where} with exit code {exit_code}")


@dataclass(frozen=True)
class ExternalTool:
    name: str
    executable: str


@dataclass(frozen=True)
class ToolResult:
    tool: ExternalTool
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ToolRunner:
    """Run an external tool once, in the foreground, and report its exit status.

    Output streams are inherited so the tool's own messages reach the
    operator. Success is decided by the exit status alone.
    """

    def run(self, tool: ExternalTool, args: Sequence[str], cwd: Path) -> ToolResult:
        cmd = [tool.executable] + [str(arg) for arg in args]
        logger.info("Running: %s", " ".join(shlex.quote(part) for part in cmd))
        try:
            completed = subprocess.run(cmd, cwd=cwd, check=False)
        except FileNotFoundError as exc:
            raise ConfigError(f"{tool.name} executable not found: {tool.executable}") from exc
        except PermissionError as exc:
            raise ConfigError(f"{tool.name} executable is not runnable: {tool.executable}") from exc
        return ToolResult(tool=tool, exit_code=completed.returncode)


@dataclass(frozen=True)
class Toolchain:
    plink: ExternalTool
    shapeit: ExternalTool
    minimac: ExternalTool

    def __iter__(self):
        return iter((self.plink, self.shapeit, self.minimac))


# (tool name, config key, environment variables, paths under <project_root>/Tools, names on PATH)
TOOL_LOOKUP: Tuple[Tuple[str, str, Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("plink", "plink_executable", ("PLINK_PATH", "PLINK_EXECUTABLE"), ("plink",), ("plink",)),
    (
        "shapeit",
        "shapeit_executable",
        ("SHAPEIT_PATH", "SHAPEIT_EXECUTABLE"),
        ("shapeit.v2.904.3.10.0-693.11.6.el7.x86_64/bin/shapeit", "shapeit/bin/shapeit", "shapeit"),
        ("shapeit",),
    ),
    (
        "Minimac3",
        "minimac_executable",
        ("MINIMAC_PATH", "MINIMAC_EXECUTABLE"),
        ("Minimac3/bin/Minimac3", "Minimac3"),
        ("Minimac3", "minimac3"),
    ),
)


def _resolve_executable(
    config: PipelineConfig,
    name: str,
    config_key: str,
    env_vars: Tuple[str, ...],
    bundled: Tuple[str, ...],
    on_path: Tuple[str, ...],
) -> ExternalTool:
    configured = config.get("tools", config_key)
    if configured:
        resolved = config.resolve_path(configured)
        return ExternalTool(name, str(resolved) if resolved else str(configured))
    for var in env_vars:
        override = os.environ.get(var)
        if override:
            return ExternalTool(name, override)
    tools_dir = config.path("paths", "tools_dir", default="Tools")
    for relative in bundled:
        candidate = tools_dir / relative
        if candidate.is_file():
            return ExternalTool(name, str(candidate))
    for binary in on_path:
        found = shutil.which(binary)
        if found:
            return ExternalTool(name, found)
    raise ConfigError(
        f"{name} executable not found. Put it under {tools_dir}, add it to PATH, "
        f"set {env_vars[0]}, or configure tools.{config_key}."
    )


def resolve_toolchain(config: PipelineConfig) -> Toolchain:
    plink, shapeit, minimac = (_resolve_executable(config, *entry) for entry in TOOL_LOOKUP)
    return Toolchain(plink=plink, shapeit=shapeit, minimac=minimac)
