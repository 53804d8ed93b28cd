"""
CostControlConfig schema.

The runtime configuration of the kernel, parsed from YAML by
``cost_config.loader``.  Frozen: a loaded configuration never changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class CostControlConfig:
    """Settings consumed by services, selectors and the engine factory."""

    database_url: str
    log_level: str = "INFO"
    variance_threshold_pct: Decimal = Decimal("10")
    max_progress_pct: Decimal = Decimal("100")
    default_indirect_pct: Decimal = Decimal("0")
    seal_algorithm: str = "sha256"
    source: str = "defaults"

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}, got {self.log_level!r}")
        if self.variance_threshold_pct < 0:
            raise ValueError("variance_threshold_pct must not be negative")
        if not Decimal("0") < self.max_progress_pct <= Decimal("100"):
            raise ValueError("max_progress_pct must be in (0, 100]")
        if self.default_indirect_pct < 0:
            raise ValueError("default_indirect_pct must not be negative")

    def to_dict(self) -> dict[str, str]:
        """Plain representation used for checksums (source excluded)."""
        return {
            "database_url": self.database_url,
            "log_level": self.log_level,
            "variance_threshold_pct": str(self.variance_threshold_pct),
            "max_progress_pct": str(self.max_progress_pct),
            "default_indirect_pct": str(self.default_indirect_pct),
            "seal_algorithm": self.seal_algorithm,
        }
