"""
Invoice notification port.

``InvoiceGenerator.send`` hands every sent invoice to an ``InvoiceNotifier``
after the status change has been committed.  Delivery (SMS, e-mail, push)
belongs to an external collaborator; the default implementation only logs.
"""

from abc import ABC, abstractmethod

from billing_kernel.domain.context import RequestContext
from billing_kernel.logging_config import get_logger
from billing_modules.invoices.models import Invoice

logger = get_logger("modules.invoices.notifications")


class InvoiceNotifier(ABC):
    """Tells the counterparty an invoice is ready."""

    @abstractmethod
    def invoice_sent(self, ctx: RequestContext, invoice: Invoice) -> None:
        ...


class LoggingNotifier(InvoiceNotifier):
    """Records the notification as a log event."""

    def invoice_sent(self, ctx: RequestContext, invoice: Invoice) -> None:
        logger.info("invoice_notification_sent", extra={
            **ctx.log_fields(),
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "related_to": invoice.related_to,
            "related_id": str(invoice.related_id),
            "total": str(invoice.total),
            "due_date": invoice.due_date.isoformat(),
        })
