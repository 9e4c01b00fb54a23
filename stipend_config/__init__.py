"""
stipend_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    It loads the packaged ``defaults.yaml`` unless an explicit path or the
    ``STIPEND_CONFIG`` environment variable names another file.

Failure modes:
    - ``FileNotFoundError`` -- the named file does not exist.
    - ``ValueError`` -- a setting fails validation.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stipend_config.loader import load_config, parse_config
from stipend_config.schema import (
    CalendarConfig,
    MoneyConfig,
    StipendConfig,
    ValidationConfig,
    WorkflowConfig,
)

_logger = logging.getLogger("stipend_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"

ENV_VAR = "STIPEND_CONFIG"


def get_active_config(path: Path | str | None = None) -> StipendConfig:
    """Load and validate the active configuration."""
    if path is None:
        path = os.environ.get(ENV_VAR) or _DEFAULT_CONFIG_FILE
    config = load_config(Path(path))
    _logger.info(
        "config_loaded",
        extra={
            "source": config.source,
            "periods_per_year": config.calendar.periods_per_year,
            "anchor_years": sorted(config.calendar.year_anchors),
        },
    )
    return config


__all__ = [
    "CalendarConfig",
    "MoneyConfig",
    "StipendConfig",
    "ValidationConfig",
    "WorkflowConfig",
    "get_active_config",
    "load_config",
    "parse_config",
]
