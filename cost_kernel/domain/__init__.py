"""
Kernel domain layer: pure value objects and rules, zero I/O.

Import from the submodules directly (``cost_kernel.domain.dtos``,
``cost_kernel.domain.wbs``, ...).
"""
