"""
Spark - interactive update dashboard for developer tools.

Core Modules:
- Catalog: Tool descriptors, update methods, categories, built-in inventory
- Detection: Local version probes and the warmed outdated cache
- Execution: Per-method update strategies with bounded timeouts
- Session: State machine, event loop runner and snapshot rendering
"""

__version__ = "0.7.0"
__author__ = "Spark Contributors"

# Catalog
from .catalog import (
    CatalogError,
    ToolDescriptor,
    UpdateMethod,
    default_inventory,
    load_catalog,
)
from .version import normalize, parse_tool_version, versions_match, compare_versions

# Detection and execution
from .detector import Detector
from .executor import UpdateExecutor, UpdateOutcome, UpdateFailed, UnsupportedMethodError

# Session
from .session import (
    SessionController,
    SessionSnapshot,
    SessionState,
    ToolRuntimeState,
    ToolStatus,
    UpdateSummary,
    compute_status,
)
from .runner import SessionRunner

# Foundation
from .common import SparkError
from .config import Config, ConfigError, load_config
from .logging_config import setup_logging, get_logger

__all__ = [
    "__version__",
    # Catalog
    "CatalogError",
    "ToolDescriptor",
    "UpdateMethod",
    "default_inventory",
    "load_catalog",
    "normalize",
    "parse_tool_version",
    "versions_match",
    "compare_versions",
    # Detection and execution
    "Detector",
    "UpdateExecutor",
    "UpdateOutcome",
    "UpdateFailed",
    "UnsupportedMethodError",
    # Session
    "SessionController",
    "SessionSnapshot",
    "SessionState",
    "ToolRuntimeState",
    "ToolStatus",
    "UpdateSummary",
    "compute_status",
    "SessionRunner",
    # Foundation
    "SparkError",
    "Config",
    "ConfigError",
    "load_config",
    "setup_logging",
    "get_logger",
]
