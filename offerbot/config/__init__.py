from offerbot.config.config import Settings, env_bool
from offerbot.config.sources_config import build_source, load_sources
from offerbot.config.validator import ConfigValidator, ValidationResult, ValidationSeverity, validate_and_log

__all__ = [
    "Settings",
    "env_bool",
    "build_source",
    "load_sources",
    "ConfigValidator",
    "ValidationResult",
    "ValidationSeverity",
    "validate_and_log",
]
