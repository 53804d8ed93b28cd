"""
Cost Control Kernel

Construction-project cost control with:
- Strict PHASE -> ACTIVITY -> TASK work breakdown structure
- Versioned, exactly-priced budgets
- Periodic progress certifications reconciled against approved baselines
- Tamper-evident integrity seals on issued certifications
- Outbox records written atomically with every state change
"""

__version__ = "0.1.0"
