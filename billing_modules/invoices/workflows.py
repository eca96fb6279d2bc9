"""
Invoice Workflows.

State machine for the stored invoice status.  ``overdue`` is a read-time
view of ``sent`` and is deliberately absent here.
"""

from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Outstanding balance is exactly zero",
)

NO_COMPLETED_PAYMENTS = Guard(
    name="no_completed_payments",
    description="No completed payment is allocated to the invoice",
)

BALANCE_REOPENED = Guard(
    name="balance_reopened",
    description="A refund left a positive outstanding balance",
)

logger.info(
    "invoice_workflow_guards_defined",
    extra={
        "guards": [
            BALANCE_ZERO.name,
            NO_COMPLETED_PAYMENTS.name,
            BALANCE_REOPENED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Counterparty invoice lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "sent",
        "paid",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("draft", "paid", action="settle", guard=BALANCE_ZERO),
        Transition("sent", "paid", action="settle", guard=BALANCE_ZERO),
        Transition("paid", "sent", action="reopen", guard=BALANCE_REOPENED),
        Transition("paid", "draft", action="reopen_unsent", guard=BALANCE_REOPENED),
        Transition("draft", "cancelled", action="cancel", guard=NO_COMPLETED_PAYMENTS),
        Transition("sent", "cancelled", action="cancel", guard=NO_COMPLETED_PAYMENTS),
    ),
    terminal_states=("cancelled",),
)
