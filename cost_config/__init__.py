"""
cost_config -- single public entrypoint for cost control configuration.

Responsibility:
    ``get_active_config()`` is the only way services and scripts obtain
    settings.  YAML loading lives in ``cost_config.loader``.

Architecture position:
    Sits beside ``cost_kernel``; the kernel never imports from here.
    Callers pass the relevant values (thresholds, percentages) into
    services and selectors explicitly.

Audit relevance:
    Every ``get_active_config()`` call emits a ``COST_CONFIG_TRACE`` log
    entry with the source chain and checksum of the configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cost_config.loader import compute_checksum, load_config
from cost_config.schema import CostControlConfig

_logger = logging.getLogger("cost_kernel.config")

__all__ = [
    "CostControlConfig",
    "compute_checksum",
    "get_active_config",
    "load_config",
]


def get_active_config(path: Path | str | None = None) -> CostControlConfig:
    """Load the active configuration and log its trace."""
    config = load_config(path)
    _logger.info(
        "COST_CONFIG_TRACE",
        extra={
            "source": config.source,
            "checksum": compute_checksum(config),
            "log_level": config.log_level,
            "seal_algorithm": config.seal_algorithm,
        },
    )
    return config
