from __future__ import annotations

import argparse
import sys

from .config import ConfigError, load_config
from .dataset import MissingDatasetError
from .parameters import resolve_run_config
from .pipeline import ImputationPipeline
from .tools import ExternalToolError
from .utils import get_logger
from .version import __version__
from .workspace import WorkspaceError


EXIT_CONFIG_ERROR = 1
EXIT_TOOL_FAILURE = 3
EXIT_MISSING_OUTPUT = 4

EPILOG = """\
Example:
  snp-impute -c a.config -g chip_data -o run123 -a
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snp-impute",
        description=f"SNP imputation around a target variant (v{__version__})",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", dest="config", metavar="CONFIG", required=True, help="Path to config file")
    parser.add_argument(
        "-g",
        dest="genotype_prefix",
        metavar="GENOFILE",
        help="Genotype file prefix, without .bed/.bim/.fam (required)",
    )
    parser.add_argument("-o", dest="output_run_id", metavar="OUTPREFIX", help="Output prefix (required)")
    parser.add_argument(
        "-a",
        dest="skip_individual_qc",
        action="store_true",
        help="Use all samples (skip individual QC)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the stages that would run without executing them",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = get_logger()

    try:
        config = load_config(args.config)
        logger.info("Reading SNP imputation config: %s", config.config_path)
        run_config = resolve_run_config(
            config,
            genotype_prefix=args.genotype_prefix,
            output_run_id=args.output_run_id,
            skip_individual_qc=args.skip_individual_qc,
        )
        if run_config.skip_individual_qc:
            logger.info("Using all samples. Skipping individual QC.")
        pipeline = ImputationPipeline(config, run_config)
        pipeline.run(dry_run=args.dry_run)
    except (ConfigError, WorkspaceError) as exc:
        logger.error(str(exc))
        return EXIT_CONFIG_ERROR
    except ExternalToolError as exc:
        logger.error(str(exc))
        return EXIT_TOOL_FAILURE
    except MissingDatasetError as exc:
        logger.error(str(exc))
        return EXIT_MISSING_OUTPUT

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
