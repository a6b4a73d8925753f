"""
Utility modules for the stain-threshold pipeline.

Provides:
- Run configuration (pydantic-validated)
- Logging utilities
- JSON helpers
"""

from .config import (
    DEFAULT_PARAMS,
    LEGACY_KEYS,
    ChannelMethod,
    ThresholdParams,
    from_legacy_params,
    load_config,
    save_config,
)

from .logging import (
    get_logger,
    setup_logging,
    log_parameters,
    ProcessingTimer,
)

from .json_utils import (
    NumpyEncoder,
    sanitize_for_json,
    atomic_json_dump,
)

__all__ = [
    # Config
    'DEFAULT_PARAMS',
    'LEGACY_KEYS',
    'ChannelMethod',
    'ThresholdParams',
    'from_legacy_params',
    'load_config',
    'save_config',
    # Logging
    'get_logger',
    'setup_logging',
    'log_parameters',
    'ProcessingTimer',
    # JSON
    'NumpyEncoder',
    'sanitize_for_json',
    'atomic_json_dump',
]
