"""
Invoices Module.

Monthly (or any period) invoices for societies and suppliers, built from
completed transactions by the invoicing engine.
"""

from billing_modules.invoices.models import Invoice, InvoiceLine, InvoiceStatus
from billing_modules.invoices.workflows import INVOICE_WORKFLOW

__all__ = [
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "INVOICE_WORKFLOW",
]
