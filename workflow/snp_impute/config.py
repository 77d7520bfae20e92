from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import yaml


class ConfigError(RuntimeError):
    """Raised when the pipeline configuration is invalid."""


_ASSIGNMENT = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
_REFERENCE = re.compile(r"\$(?:\{[^}]*\}?|[A-Za-z_][A-Za-z0-9_]*)")


def _is_comment_or_blank(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _looks_like_shell_config(text: str) -> bool:
    lines = [line for line in text.splitlines() if not _is_comment_or_blank(line)]
    return bool(lines) and all(_ASSIGNMENT.match(line.strip()) for line in lines)


def _expand(key: str, value: str, known: Dict[str, Any]) -> str:
    # Same lookup bash does when sourcing: earlier assignments, then the environment.
    expanded = Template(value).safe_substitute({**os.environ, **known})
    unresolved = _REFERENCE.search(expanded)
    if unresolved:
        raise ConfigError(f"Cannot resolve {unresolved.group(0)} in the value of {key}: {value!r}")
    return expanded


def _parse_shell_assignments(text: str) -> Dict[str, Any]:
    # Legacy configs were sourced by bash: KEY=value, optionally quoted.
    data: Dict[str, Any] = {}
    for line in text.splitlines():
        if _is_comment_or_blank(line):
            continue
        match = _ASSIGNMENT.match(line.strip())
        key, raw = match.group(1), match.group(2)
        try:
            tokens = shlex.split(raw, comments=True)
        except ValueError as exc:
            raise ConfigError(f"Cannot parse value for {key}: {raw!r} ({exc})") from exc
        value = " ".join(tokens)
        if not raw.lstrip().startswith("'"):
            value = _expand(key, value, data)
        data[key] = value
    return data


@dataclass(frozen=True)
class PipelineConfig:
    data: Dict[str, Any]
    root: Path
    config_path: Path

    @classmethod
    def load(cls, path: Path | str) -> "PipelineConfig":
        config_path = Path(path).expanduser().resolve()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")

        text = config_path.read_text(encoding="utf-8")
        if _looks_like_shell_config(text):
            data: Any = _parse_shell_assignments(text)
        else:
            try:
                data = yaml.safe_load(text) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Failed to parse YAML config {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("Top-level config structure must be a mapping of key to value")

        root_ref = data.get("project_root", ".")
        root = (config_path.parent / str(root_ref)).resolve()
        return cls(data=data, root=root, config_path=config_path)

    def get(self, *keys: str, default: Any = None) -> Any:
        node: Any = self.data
        for key in keys:
            if isinstance(node, dict) and key in node:
                node = node[key]
            else:
                return default
        return node

    def first(self, *names: str, default: Any = None) -> Any:
        """Return the value of the first top-level key in ``names`` that is set."""
        for name in names:
            value = self.data.get(name)
            if value not in (None, ""):
                return value
        return default

    def resolve_path(self, value: Optional[str]) -> Optional[Path]:
        if value in (None, ""):
            return None
        path = Path(str(value)).expanduser()
        if not path.is_absolute():
            path = (self.root / path).resolve()
        return path

    def path(self, *keys: str, default: Optional[str] = None) -> Optional[Path]:
        raw = self.get(*keys, default=default)
        return self.resolve_path(raw)


load_config = PipelineConfig.load
