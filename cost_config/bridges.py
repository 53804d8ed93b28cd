"""
Config -> Kernel Bridges.

Build kernel objects from a ``CostControlConfig``.  These live in
cost_config (the producer) because the kernel never imports cost_config.

Usage:
    from cost_config import get_active_config
    from cost_config.bridges import bootstrap, build_certification_service

    config = get_active_config()
    bootstrap(config)
    with session_scope() as session:
        service = build_certification_service(config, SqlUnitOfWork(session))
"""

from __future__ import annotations

from cost_config.schema import CostControlConfig
from cost_kernel.db.engine import init_engine_from_url
from cost_kernel.db.immutability import register_immutability_listeners
from cost_kernel.logging_config import configure_logging
from cost_kernel.selectors.progress_selector import ProgressSelector
from cost_kernel.services.budget_service import BudgetService
from cost_kernel.services.certification_service import CertificationService


def bootstrap(config: CostControlConfig, echo: bool = False):
    """
    Process startup: logging at the configured level, the engine, and the
    ORM immutability listeners guarding sealed and approved rows.
    """
    configure_logging(level=config.log_level)
    engine = init_engine_from_url(config.database_url, echo=echo)
    register_immutability_listeners()
    return engine


def build_certification_service(config: CostControlConfig, uow, clock=None) -> CertificationService:
    return CertificationService(
        uow,
        clock=clock,
        max_progress_pct=config.max_progress_pct,
        seal_algorithm=config.seal_algorithm,
    )


def build_budget_service(config: CostControlConfig, uow, clock=None) -> BudgetService:
    return BudgetService(uow, clock=clock, default_indirect_pct=config.default_indirect_pct)


def build_progress_selector(config: CostControlConfig, uow) -> ProgressSelector:
    return ProgressSelector(uow, variance_threshold_pct=config.variance_threshold_pct)
