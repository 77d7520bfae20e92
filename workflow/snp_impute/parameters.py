"""Derive the validated run parameters from the config file and CLI identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

from .config import ConfigError, PipelineConfig
from .utils import get_logger


logger = get_logger()

DEFAULT_PHASING_SEED = 1234
DEFAULT_PHASING_THREADS = 10
DEFAULT_IMPUTATION_CPUS = 20

GENETIC_MAP_TEMPLATE = "genetic_map_GRCh37_chr{chromosome}_for_shapeit.txt"

# Config keys per field; the upper-case spellings come from the legacy shell configs.
FIELD_KEYS = {
    "target-variant-id": ("snp", "SNP", "target_variant_id"),
    "chromosome": ("chromosome", "CHROMOSOME"),
    "position": ("position", "POSITION"),
    "window-half-width": ("window_size", "WINDOW_SIZE", "window_half_width"),
    "reference-panel": ("refhaps", "REFHAPS", "reference_panel"),
}

_CHROMOSOME_TOKEN = re.compile(r"^[A-Za-z0-9_.]+$")


class MissingParameterError(ConfigError):
    """Raised when a required run parameter is absent."""

    def __init__(self, field: str, hint: str = ""):
        self.field = field
        message = f"Missing required parameter: {field}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)


@dataclass(frozen=True)
class Window:
    start: int
    end: int

    @classmethod
    def around(cls, position: int, half_width: int) -> "Window":
        return cls(start=position - half_width, end=position + half_width)

    @property
    def from_bp(self) -> int:
        """Lower bound handed to the tools; genomic coordinates start at 1."""
        return max(self.start, 1)

    @property
    def to_bp(self) -> int:
        return self.end

    def __contains__(self, position: int) -> bool:
        return self.start <= position <= self.end


@dataclass(frozen=True)
class RunConfig:
    target_variant_id: str
    chromosome: str
    position: int
    window_half_width: int
    reference_panel: Path
    genetic_map: Path
    genotype_prefix: Path
    output_run_id: str
    skip_individual_qc: bool = False
    phasing_seed: int = DEFAULT_PHASING_SEED
    phasing_threads: int = DEFAULT_PHASING_THREADS
    imputation_cpus: int = DEFAULT_IMPUTATION_CPUS

    @property
    def window(self) -> Window:
        return Window.around(self.position, self.window_half_width)

    @property
    def imputation_interval(self) -> Tuple[int, int]:
        # Minimac3 only imputes the base pairs flanking the target, not the whole window.
        return self.position - 1, self.position + 1

    def describe(self) -> Sequence[str]:
        return (
            f"target variant: {self.target_variant_id}",
            f"chromosome: {self.chromosome}",
            f"position: {self.position}",
            f"window: {self.window.start}-{self.window.end} (half width {self.window_half_width})",
            f"reference panel: {self.reference_panel}",
            f"genetic map: {self.genetic_map}",
            f"genotype data: {self.genotype_prefix}.bed/.bim/.fam",
            f"output run id: {self.output_run_id}",
            f"individual QC: {'skipped' if self.skip_individual_qc else 'enabled'}",
        )


def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _positive_int(field: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field} must be a positive integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ConfigError(f"{field} must be a positive integer, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{field} must be a positive integer, got {number}")
    return number


def _config_field(config: PipelineConfig, field: str) -> Any:
    keys = FIELD_KEYS[field]
    value = config.first(*keys)
    if _blank(value):
        raise MissingParameterError(field, f"set '{keys[0]}' in {config.config_path.name}")
    return value


def resolve_run_config(
    config: PipelineConfig,
    genotype_prefix: Optional[str],
    output_run_id: Optional[str],
    skip_individual_qc: bool = False,
) -> RunConfig:
    """Validate every required parameter in a fixed order and derive the rest.

    The order is genotype prefix, output run id, then the config fields in the
    order of ``FIELD_KEYS``. The first missing one raises
    :class:`MissingParameterError` naming it.
    """
    if _blank(genotype_prefix):
        raise MissingParameterError("genotype-input-prefix", "pass -g")
    if _blank(output_run_id):
        raise MissingParameterError("output-run-id", "pass -o")

    raw = {field: _config_field(config, field) for field in FIELD_KEYS}

    chromosome = str(raw["chromosome"]).strip()
    if not _CHROMOSOME_TOKEN.match(chromosome):
        raise ConfigError(f"chromosome must be a single token such as '1' or 'X', got {chromosome!r}")

    position = _positive_int("position", raw["position"])
    half_width = _positive_int("window-half-width", raw["window-half-width"])

    run_id = str(output_run_id).strip()
    if "/" in run_id or "\\" in run_id or run_id in {".", ".."}:
        raise ConfigError(f"output-run-id must be a plain name, got {run_id!r}")

    reference_dir = config.path("paths", "reference_dir", default="Ref")
    chromosome_dir = reference_dir / f"Chr_{chromosome}"
    genetic_map = config.path("paths", "genetic_map") or chromosome_dir / GENETIC_MAP_TEMPLATE.format(
        chromosome=chromosome
    )
    panel = Path(str(raw["reference-panel"]).strip()).expanduser()
    if not panel.is_absolute():
        panel = chromosome_dir / panel

    run_config = RunConfig(
        target_variant_id=str(raw["target-variant-id"]).strip(),
        chromosome=chromosome,
        position=position,
        window_half_width=half_width,
        reference_panel=panel,
        genetic_map=genetic_map,
        genotype_prefix=Path(str(genotype_prefix).strip()).expanduser().resolve(),
        output_run_id=run_id,
        skip_individual_qc=bool(skip_individual_qc),
        phasing_seed=_positive_int("phasing.seed", config.get("phasing", "seed", default=DEFAULT_PHASING_SEED)),
        phasing_threads=_positive_int("phasing.threads", config.get("phasing", "threads", default=DEFAULT_PHASING_THREADS)),
        imputation_cpus=_positive_int("imputation.cpus", config.get("imputation", "cpus", default=DEFAULT_IMPUTATION_CPUS)),
    )
    if run_config.window.start < 1:
        logger.warning(
            "Window start %d is before the first base; tools will receive %d",
            run_config.window.start,
            run_config.window.from_bp,
        )
    return run_config
