"""
Transaction Workflows.

State machines for collections/deliveries and driver expenses.
"""

from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.transactions.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

NOT_INVOICED = Guard(
    name="not_invoiced",
    description="Transaction is not attached to a non-cancelled invoice",
)

FUEL_CHARGED_TO_VENDOR = Guard(
    name="fuel_charged_to_vendor",
    description="Fuel expenses are always borne by the vendor",
)

AMOUNT_MATCHES_EXPENSE = Guard(
    name="amount_matches_expense",
    description="Payment amount equals the approved expense amount",
)

logger.info(
    "transaction_workflow_guards_defined",
    extra={
        "guards": [
            NOT_INVOICED.name,
            FUEL_CHARGED_TO_VENDOR.name,
            AMOUNT_MATCHES_EXPENSE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Collection / Delivery Workflow
# -----------------------------------------------------------------------------

TRANSACTION_WORKFLOW = Workflow(
    name="billable_transaction",
    description="Collection and delivery lifecycle",
    initial_state="completed",
    states=(
        "pending",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "completed", action="complete"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("completed", "cancelled", action="cancel", guard=NOT_INVOICED),
    ),
    terminal_states=("cancelled",),
)


# -----------------------------------------------------------------------------
# Expense Workflow
# -----------------------------------------------------------------------------

EXPENSE_WORKFLOW = Workflow(
    name="driver_expense",
    description="Driver expense claim lifecycle",
    initial_state="pending",
    states=(
        "pending",
        "approved",
        "rejected",
        "paid",
    ),
    transitions=(
        Transition("pending", "approved", action="approve"),
        Transition("pending", "rejected", action="reject"),
        Transition("approved", "paid", action="pay", guard=AMOUNT_MATCHES_EXPENSE),
        Transition("paid", "approved", action="refund"),
    ),
    terminal_states=("rejected",),
)
