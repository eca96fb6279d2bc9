"""
Billing modules.

One package per business noun, each split the same way:

- ``models.py``     frozen dataclass DTOs and enums (no I/O)
- ``orm.py``        SQLAlchemy tables
- ``workflows.py``  status state machines (where the noun has a lifecycle)
- ``service.py``    orchestration; owns the transaction boundary

Computation lives in ``billing_engines``; persistence primitives and error
types live in ``billing_kernel``.
"""
