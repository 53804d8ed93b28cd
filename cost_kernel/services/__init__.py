"""
Kernel services: WBS, budget and certification lifecycles over a UnitOfWork.

Import from the submodules directly, e.g.
``from cost_kernel.services.certification_service import CertificationService``.
"""
