"""The eight pipeline stages and the argument lists they hand to PLINK, SHAPEIT and Minimac3.

Every stage reads the dataset the tracker holds as current and, when its tool
succeeds, advances the tracker to what it wrote. Argument builders are plain
functions of their inputs so they can be checked without running anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .dataset import (
    INTERMEDIATE_BASENAME,
    DatasetHandle,
    DatasetStateTracker,
    MissingDatasetError,
    has_marker,
    read_marker_ids,
)
from .parameters import RunConfig
from .tools import ExternalTool, ExternalToolError, Toolchain, ToolResult, ToolRunner
from .utils import get_logger, step_logger
from .workspace import RunWorkspace


logger = get_logger()

MAX_MARKER_MISSING_RATE = 0.02
MAX_SAMPLE_MISSING_RATE = 0.02
MIN_ALLELE_FREQUENCY = 0.001
HWE_P_THRESHOLD = 1e-6

PHASED_SUFFIX = ".phased"
PHASED_VCF_SUFFIX = ".phased.vcf"
IMPUTED_SUFFIX = ".imputed.output"


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class StageResult:
    stage: str
    exit_code: int
    success: bool
    tool: Optional[str] = None
    produced: Optional[DatasetHandle] = None
    artifact: Optional[Path] = None
    skipped: bool = False

    def check(self) -> "StageResult":
        if not self.success:
            raise ExternalToolError(self.tool or self.stage, self.exit_code, self.stage)
        return self


@dataclass
class StageContext:
    run: RunConfig
    workspace: RunWorkspace
    tracker: DatasetStateTracker
    tools: Toolchain
    runner: ToolRunner

    def intermediate(self) -> DatasetHandle:
        return DatasetHandle(self.workspace.path, INTERMEDIATE_BASENAME, intermediate=True)

    def public(self) -> DatasetHandle:
        return DatasetHandle(self.workspace.path, self.run.output_run_id, intermediate=False)

    def artifact(self, suffix: str) -> Path:
        return self.workspace.file(f"{self.run.output_run_id}{suffix}")

    def invoke(self, tool: ExternalTool, args: Sequence[str]) -> ToolResult:
        return self.runner.run(tool, args, self.workspace.path)


# Argument builders


def plink_args(source: DatasetHandle, target: DatasetHandle, flags: Sequence[str]) -> List[str]:
    return ["--bfile", str(source.prefix), *flags, "--make-bed", "--out", str(target.prefix)]


def window_flags(run: RunConfig, exclude_target: bool) -> List[str]:
    window = run.window
    flags = [
        "--chr", run.chromosome,
        "--from-bp", str(window.from_bp),
        "--to-bp", str(window.to_bp),
    ]
    if exclude_target:
        flags += ["--exclude-snp", run.target_variant_id]
    return flags


def phasing_args(run: RunConfig, dataset: DatasetHandle, output: Path) -> List[str]:
    window = run.window
    return [
        "-B", str(dataset.prefix),
        "-M", str(run.genetic_map),
        "-O", str(output),
        "--input-from", str(window.from_bp),
        "--input-to", str(window.to_bp),
        "--seed", str(run.phasing_seed),
        "--thread", str(run.phasing_threads),
    ]


def vcf_conversion_args(haplotypes: Path, vcf: Path) -> List[str]:
    return ["-convert", "--input-haps", str(haplotypes), "--output-vcf", str(vcf)]


def imputation_args(run: RunConfig, vcf: Path, prefix: Path) -> List[str]:
    start, end = run.imputation_interval
    return [
        "--refHaps", str(run.reference_panel),
        "--haps", str(vcf),
        "--prefix", str(prefix),
        "--start", str(start),
        "--end", str(end),
        "--chr", run.chromosome,
        "--window", str(run.window_half_width),
        "--cpus", str(run.imputation_cpus),
    ]


# Stages


def _plink_stage(
    ctx: StageContext,
    stage: str,
    flags: Sequence[str],
    target: DatasetHandle,
    final: bool = False,
) -> StageResult:
    source = ctx.tracker.current()
    outcome = ctx.invoke(ctx.tools.plink, plink_args(source, target, flags))
    if not outcome.success:
        return StageResult(stage, outcome.exit_code, False, tool=outcome.tool.name)
    ctx.tracker.advance(target, final=final)
    return StageResult(stage, outcome.exit_code, True, tool=outcome.tool.name, produced=target)


def snp_qc(ctx: StageContext) -> StageResult:
    with step_logger(f"SNP-level QC (--geno {_fmt(MAX_MARKER_MISSING_RATE)})"):
        return _plink_stage(ctx, "snp_qc", ["--geno", _fmt(MAX_MARKER_MISSING_RATE)], ctx.intermediate())


def individual_qc(ctx: StageContext) -> StageResult:
    with step_logger(f"Individual-level QC (--mind {_fmt(MAX_SAMPLE_MISSING_RATE)})"):
        return _plink_stage(ctx, "individual_qc", ["--mind", _fmt(MAX_SAMPLE_MISSING_RATE)], ctx.intermediate())


def skip_individual_qc(ctx: StageContext) -> StageResult:
    current = ctx.tracker.current()
    logger.info("* Using all samples; individual-level QC skipped")
    return StageResult("individual_qc", 0, True, produced=current, skipped=True)


def extract_window(ctx: StageContext) -> StageResult:
    run = ctx.run
    with step_logger(f"Extract window around {run.target_variant_id}"):
        # Presence is checked on the QC'd dataset, not on the raw input.
        try:
            marker_ids = read_marker_ids(ctx.tracker.current())
        except MissingDatasetError as exc:
            raise MissingDatasetError(exc.path, "extract_window") from exc
        exclude = has_marker(marker_ids, run.target_variant_id)
        if exclude:
            logger.info("%s is genotyped; excluding it so it gets imputed", run.target_variant_id)
        else:
            logger.info("%s is not genotyped; nothing to exclude", run.target_variant_id)
        return _plink_stage(ctx, "extract_window", window_flags(run, exclude), ctx.intermediate())


def maf_filter(ctx: StageContext) -> StageResult:
    with step_logger(f"MAF filter (MAF > {_fmt(MIN_ALLELE_FREQUENCY)})"):
        return _plink_stage(ctx, "maf_filter", ["--maf", _fmt(MIN_ALLELE_FREQUENCY)], ctx.intermediate())


def hwe_filter(ctx: StageContext) -> StageResult:
    with step_logger(f"HWE filter (P > {_fmt(HWE_P_THRESHOLD)})"):
        return _plink_stage(ctx, "hwe_filter", ["--hwe", _fmt(HWE_P_THRESHOLD)], ctx.public(), final=True)


def phasing(ctx: StageContext) -> StageResult:
    output = ctx.artifact(PHASED_SUFFIX)
    with step_logger("Phasing with SHAPEIT"):
        outcome = ctx.invoke(ctx.tools.shapeit, phasing_args(ctx.run, ctx.tracker.current(), output))
    return StageResult("phasing", outcome.exit_code, outcome.success, tool=outcome.tool.name, artifact=output)


def convert_to_vcf(ctx: StageContext) -> StageResult:
    haplotypes = ctx.artifact(PHASED_SUFFIX)
    vcf = ctx.artifact(PHASED_VCF_SUFFIX)
    with step_logger("Converting haplotypes to VCF"):
        outcome = ctx.invoke(ctx.tools.shapeit, vcf_conversion_args(haplotypes, vcf))
    return StageResult("convert_to_vcf", outcome.exit_code, outcome.success, tool=outcome.tool.name, artifact=vcf)


def imputation(ctx: StageContext) -> StageResult:
    vcf = ctx.artifact(PHASED_VCF_SUFFIX)
    prefix = ctx.artifact(IMPUTED_SUFFIX)
    with step_logger("Imputation with Minimac3"):
        outcome = ctx.invoke(ctx.tools.minimac, imputation_args(ctx.run, vcf, prefix))
    return StageResult("imputation", outcome.exit_code, outcome.success, tool=outcome.tool.name, artifact=prefix)


StageFunction = Callable[[StageContext], StageResult]


@dataclass(frozen=True)
class Stage:
    name: str
    tool: Optional[str]
    handler: StageFunction


STAGE_ORDER: Sequence[str] = (
    "snp_qc",
    "individual_qc",
    "extract_window",
    "maf_filter",
    "hwe_filter",
    "phasing",
    "convert_to_vcf",
    "imputation",
)


def build_stage_plan(run: RunConfig) -> List[Stage]:
    """Return the stages in execution order for one run."""
    if run.skip_individual_qc:
        ind_qc = Stage("individual_qc", None, skip_individual_qc)
    else:
        ind_qc = Stage("individual_qc", "plink", individual_qc)
    return [
        Stage("snp_qc", "plink", snp_qc),
        ind_qc,
        Stage("extract_window", "plink", extract_window),
        Stage("maf_filter", "plink", maf_filter),
        Stage("hwe_filter", "plink", hwe_filter),
        Stage("phasing", "shapeit", phasing),
        Stage("convert_to_vcf", "shapeit", convert_to_vcf),
        Stage("imputation", "Minimac3", imputation),
    ]
