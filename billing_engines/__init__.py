"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  The canonical import surface for billing_modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel domain values, types and logging.
    MUST NOT import billing_modules or billing_api.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the calling service.
    - Decimal-only arithmetic; floats are rejected at the boundary.
    - Every engine invocation is traced via ``@traced_engine``.
"""

from billing_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationResult,
    AllocationTarget,
)
from billing_engines.invoicing import (
    DEFAULT_TERM_DAYS,
    BillableItem,
    ChargePolicy,
    InvoiceCalculator,
    InvoiceDraft,
    InvoiceLineDraft,
    PaymentTerms,
    due_date_for,
    format_invoice_number,
)
from billing_engines.outstanding import (
    CarryOver,
    OutstandingBalance,
    compute_outstanding,
    is_overdue,
    split_carry_over,
)
from billing_engines.rates import (
    NominalRate,
    PerLiterRate,
    QuantitySource,
    RateBasis,
    RateInput,
    RateResolution,
    RateResolver,
    TankerRate,
    nominal_rate,
)

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationResult",
    "AllocationTarget",
    "DEFAULT_TERM_DAYS",
    "BillableItem",
    "ChargePolicy",
    "InvoiceCalculator",
    "InvoiceDraft",
    "InvoiceLineDraft",
    "PaymentTerms",
    "due_date_for",
    "format_invoice_number",
    "CarryOver",
    "OutstandingBalance",
    "compute_outstanding",
    "is_overdue",
    "split_carry_over",
    "NominalRate",
    "PerLiterRate",
    "QuantitySource",
    "RateBasis",
    "RateInput",
    "RateResolution",
    "RateResolver",
    "TankerRate",
    "nominal_rate",
]
