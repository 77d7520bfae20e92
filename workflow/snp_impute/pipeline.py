from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import ConfigError, PipelineConfig
from .dataset import DatasetHandle, DatasetStateTracker
from .parameters import RunConfig
from .progress import ProgressLog
from .stages import IMPUTED_SUFFIX, Stage, StageContext, StageResult, build_stage_plan
from .tools import ExternalToolError, Toolchain, ToolRunner, resolve_toolchain
from .utils import LOG_DATEFMT, LOG_FORMAT, get_logger
from .workspace import DEFAULT_OUTPUT_ROOT, RunWorkspace, create_workspace


class ImputationPipeline:
    """Run the QC, phasing and imputation stages for one target variant.

    Stages run strictly in order; the first failing tool stops the run and
    everything already written stays in the run directory.
    """

    def __init__(
        self,
        config: PipelineConfig,
        run_config: RunConfig,
        toolchain: Optional[Toolchain] = None,
        runner: Optional[ToolRunner] = None,
        output_root: Optional[Path] = None,
    ):
        self.config = config
        self.run_config = run_config
        self.tools = toolchain or resolve_toolchain(config)
        self.runner = runner or ToolRunner()
        self.output_root = output_root or config.path("paths", "output_root", default=DEFAULT_OUTPUT_ROOT)
        self.tracker = DatasetStateTracker()
        self.logger = get_logger()

    def stages(self) -> List[Stage]:
        return build_stage_plan(self.run_config)

    def _check_inputs(self) -> DatasetHandle:
        raw = DatasetHandle.from_prefix(self.run_config.genotype_prefix, intermediate=False)
        missing = raw.missing_files()
        if missing:
            raise ConfigError(
                "Genotype input is incomplete, missing: " + ", ".join(str(path) for path in missing)
            )
        return raw

    def run(self, dry_run: bool = False) -> List[StageResult]:
        run = self.run_config
        raw = self._check_inputs()
        plan = self.stages()
        run_order = [stage.name for stage in plan]
        for line in run.describe():
            self.logger.info("  %s", line)
        for tool in self.tools:
            self.logger.info("  %s: %s", tool.name, tool.executable)

        workspace: RunWorkspace = create_workspace(self.output_root, run.output_run_id)
        results: List[StageResult] = []
        log_handler: logging.Handler | None = None
        progress: ProgressLog | None = None
        current_stage: Optional[str] = None
        try:
            workspace.history_dir.mkdir(parents=True, exist_ok=True)
            start_time = datetime.now()
            suffix = "_dryrun" if dry_run else ""
            session_name = f"run_{start_time.strftime('%Y%m%d_%H%M%S')}{suffix}"
            progress = ProgressLog(
                workspace.history_dir / f"{session_name}.json",
                session=session_name,
                run_id=run.output_run_id,
                dry_run=dry_run,
                run_order=run_order,
                started_at=start_time,
            )
            log_handler = logging.FileHandler(workspace.history_dir / f"{session_name}.log", encoding="utf-8")
            log_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
            self.logger.addHandler(log_handler)
            self.logger.info("Run started (dry_run=%s): %s", dry_run, ", ".join(run_order))

            if dry_run:
                for stage in plan:
                    progress.plan_stage(stage.name, stage.tool)
                    self.logger.info("[dry-run] %s (%s)", stage.name, stage.tool or "pass-through")
                progress.finish(status="dry_run")
                self.logger.info("Dry run complete")
                return results

            self.tracker.start(raw)
            context = StageContext(
                run=run,
                workspace=workspace,
                tracker=self.tracker,
                tools=self.tools,
                runner=self.runner,
            )
            for stage in plan:
                current_stage = stage.name
                progress.start_stage(stage.name)
                result = stage.handler(context)
                results.append(result)
                if not result.success:
                    progress.fail_stage(stage.name, exit_code=result.exit_code)
                    current_stage = None
                    result.check()
                progress.complete_stage(
                    stage.name,
                    status="skipped" if result.skipped else "completed",
                    exit_code=None if result.skipped else result.exit_code,
                )
                current_stage = None
            progress.finish(status="completed")
            self.logger.info(
                "SNP imputation finished, results saved in: %s",
                context.artifact(IMPUTED_SUFFIX).name,
            )
            return results
        except Exception as exc:
            if progress is not None:
                if current_stage is not None:
                    progress.fail_stage(current_stage, message=str(exc))
                progress.finish(status="failed", message=str(exc))
            if isinstance(exc, ExternalToolError):
                self.logger.error("Stopped at %s; files so far are kept in %s", exc.stage, workspace.path)
            raise
        finally:
            if log_handler is not None:
                self.logger.removeHandler(log_handler)
                log_handler.close()


__all__ = ["ImputationPipeline"]
