"""
Common Utilities

Shared modules used across all services:
- config.py - Plans matrix dataclasses and codec
- settings.py - Runtime settings (YAML + environment)
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    Feature,
    PlanId,
    Role,
    AccessFlag,
    Plan,
    ConfigDocument,
    Selection,
    FeatureRow,
    CANONICAL_FEATURE_ORDER,
    DEFAULT_CONFIG_DOCUMENT,
    load_config_document,
    dump_config_document,
)
from .exceptions import (
    PlanMatrixError,
    ConfigError,
    SyncError,
    FetchError,
    DocumentDecodeError,
    StoreError,
    ResolutionError,
    SubscriptionClosed,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_config_loaded,
    set_log_level,
    log_resolution,
)
from .settings import Settings, load_settings

__all__ = [
    # Config
    "Feature",
    "PlanId",
    "Role",
    "AccessFlag",
    "Plan",
    "ConfigDocument",
    "Selection",
    "FeatureRow",
    "CANONICAL_FEATURE_ORDER",
    "DEFAULT_CONFIG_DOCUMENT",
    "load_config_document",
    "dump_config_document",
    # Settings
    "Settings",
    "load_settings",
    # Exceptions
    "PlanMatrixError",
    "ConfigError",
    "SyncError",
    "FetchError",
    "DocumentDecodeError",
    "StoreError",
    "ResolutionError",
    "SubscriptionClosed",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_config_loaded",
    "set_log_level",
    "log_resolution",
]
