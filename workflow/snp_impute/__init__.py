from .config import PipelineConfig, load_config
from .parameters import RunConfig, resolve_run_config
from .pipeline import ImputationPipeline
from .version import __version__

__all__ = ["PipelineConfig", "load_config", "RunConfig", "resolve_run_config", "ImputationPipeline", "__version__"]
