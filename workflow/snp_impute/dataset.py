from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Iterable, List, Optional, Tuple

import pandas as pd

from .utils import get_logger


logger = get_logger()

DATASET_SUFFIXES: Tuple[str, ...] = (".bed", ".bim", ".fam")
INTERMEDIATE_BASENAME = "data"


class StateConsistencyError(RuntimeError):
    """Raised when the dataset generations are tracked out of order."""


class MissingDatasetError(StateConsistencyError):
    """Raised when a dataset file a stage needs was never written."""

    def __init__(self, path: Path, stage: Optional[str] = None):
        self.path = path
        self.stage = stage
        where = f"{stage}: " if stage else ""
        super().__init__(f"{where}{path} does not exist; the previous stage exited 0 without writing it")


@dataclass(frozen=True)
class DatasetHandle:
    """One generation of the genotype dataset: ``<basename>.bed/.bim/.fam``."""

    directory: Path
    basename: str
    intermediate: bool = True

    @classmethod
    def from_prefix(cls, prefix: Path | str, intermediate: bool = False) -> "DatasetHandle":
        prefix = Path(prefix)
        return cls(directory=prefix.parent, basename=prefix.name, intermediate=intermediate)

    @property
    def prefix(self) -> Path:
        return self.directory / self.basename

    @property
    def markers(self) -> Path:
        return self.directory / f"{self.basename}.bim"

    def files(self) -> List[Path]:
        return [self.directory / f"{self.basename}{suffix}" for suffix in DATASET_SUFFIXES]

    def missing_files(self) -> List[Path]:
        return [path for path in self.files() if not path.exists()]

    def owns(self, path: Path) -> bool:
        return path.parent == self.directory and path.name.startswith(f"{self.basename}.")

    def __str__(self) -> str:
        return str(self.prefix)


def read_marker_ids(handle: DatasetHandle) -> AbstractSet[str]:
    """Return the marker identifiers (second ``.bim`` column) of a dataset.

    Identifiers are taken verbatim; ``NA`` or ``null`` are valid marker names.
    """
    if not handle.markers.is_file():
        raise MissingDatasetError(handle.markers)
    try:
        bim = pd.read_csv(
            handle.markers,
            sep=r"\s+",
            header=None,
            usecols=[1],
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return frozenset()
    return frozenset(bim[1])


def has_marker(marker_ids: Iterable[str], target: str) -> bool:
    return target in set(marker_ids)


class DatasetStateTracker:
    """Keep exactly one current dataset generation and remember the earlier ones."""

    def __init__(self) -> None:
        self._current: Optional[DatasetHandle] = None
        self._history: List[DatasetHandle] = []

    @property
    def generation(self) -> int:
        return max(len(self._history) - 1, 0)

    @property
    def history(self) -> Tuple[DatasetHandle, ...]:
        return tuple(self._history)

    def start(self, handle: DatasetHandle) -> None:
        if self._current is not None:
            raise StateConsistencyError(f"Dataset tracking already started at {self._current}")
        self._current = handle
        self._history.append(handle)

    def current(self) -> DatasetHandle:
        if self._current is None:
            raise StateConsistencyError("No current dataset; start() was never called")
        return self._current

    def advance(self, handle: DatasetHandle, final: bool = False) -> DatasetHandle:
        """Make ``handle`` current.

        With ``final`` the handle becomes the public dataset of the run and the
        files of every earlier intermediate generation are deleted.
        """
        previous = self.current()
        if final and handle.intermediate:
            raise StateConsistencyError(f"Final dataset {handle} cannot be an intermediate generation")
        self._current = handle
        self._history.append(handle)
        logger.info("Dataset generation %d: %s (was %s)", self.generation, handle, previous)
        if final:
            self._purge_intermediates(handle)
        return handle

    def _purge_intermediates(self, keep: DatasetHandle) -> None:
        seen = set()
        removed = 0
        for old in self._history[:-1]:
            if not old.intermediate or (old.directory, old.basename) in seen:
                continue
            seen.add((old.directory, old.basename))
            for path in sorted(old.directory.glob(f"{old.basename}.*")):
                if keep.owns(path) or not path.is_file():
                    continue
                path.unlink()
                removed += 1
        logger.info("Removed %d intermediate file(s); %s is now the filtered dataset", removed, keep)
