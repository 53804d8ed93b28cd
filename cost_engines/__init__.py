"""
Module: cost_engines
Responsibility:
    Pure calculation engines for construction cost control: budget line
    costing, certification progress reconciliation, integrity sealing and
    budget-vs-actual variance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cost_kernel.domain.values, cost_kernel.utils.hashing,
    cost_kernel.logging_config and sibling engine modules.
    MUST NOT import cost_kernel services, selectors or models.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic: float inputs raise TypeError.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from cost_engines.costing import line_totals, sale_unit_price
    from cost_engines.progress import Baseline, compute_line
    from cost_engines.seal import seal, verify_seal
    from cost_engines.variance import variance
"""
