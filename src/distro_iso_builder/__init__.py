"""distro_iso_builder package."""

from .builder import BuildResult, DistroBuilder, ValidationFailed, render_build_plan
from .config import DistroConfig, default_config, load_config, save_config
from .progress import BuildError, BuildProgress
from .validator import ConfigValidator, Severity, ValidationResult, validate

__all__ = [
    "BuildError",
    "BuildProgress",
    "BuildResult",
    "ConfigValidator",
    "DistroBuilder",
    "DistroConfig",
    "Severity",
    "ValidationFailed",
    "ValidationResult",
    "default_config",
    "load_config",
    "render_build_plan",
    "save_config",
    "validate",
]
