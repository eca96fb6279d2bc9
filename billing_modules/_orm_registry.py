"""
Module ORM Registry (``billing_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy model is imported so that
``Base.metadata`` holds all table definitions before ``create_all()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Called by ``billing_kernel.db.engine``'s
``create_tables()`` / ``drop_tables()`` and therefore by every entrypoint
and by ``tests/conftest.py``.
"""


def import_all_orm_models() -> None:
    """Import kernel tables and every ``billing_modules.*.orm`` module.

    Order matters only for readability; SQLAlchemy resolves foreign keys
    once all tables are registered.  Idempotent.
    """
    # Kernel tables first (sequence counters)
    import billing_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import billing_modules.counterparties.orm  # noqa: F401
    import billing_modules.transactions.orm  # noqa: F401
    import billing_modules.invoices.orm  # noqa: F401
    import billing_modules.payments.orm  # noqa: F401
    # fmt: on
