"""
Module: billing_engines.allocation
Responsibility:
    Apply one lump payment across several open invoices, oldest first
    (FIFO), with any remainder reported as unallocated credit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_allocated + unallocated == source_amount.
    - No target receives more than its eligible (outstanding) amount.
    - Ordering is deterministic: due date, then priority, then target id.

Failure modes:
    - CurrencyMismatchError if a target's currency differs from the source.
    - ValueError on a negative source amount or eligible amount.

Usage:
    engine = AllocationEngine()
    result = engine.allocate_fifo(
        amount=Money.of("17000.00", "INR"),
        targets=[
            AllocationTarget(target_id=june_id, eligible_amount=Money.of("2000", "INR"),
                             due_date=date(2026, 7, 15)),
            AllocationTarget(target_id=july_id, eligible_amount=Money.of("15000", "INR"),
                             due_date=date(2026, 8, 15)),
        ],
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import CurrencyMismatchError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class AllocationTarget:
    """
    An open obligation that can receive part of a payment.

    Guarantees:
        - ``eligible_amount`` is non-negative.
    """

    target_id: str | UUID
    eligible_amount: Money
    due_date: date | None = None
    priority: int = 0

    def __post_init__(self) -> None:
        if self.eligible_amount.is_negative:
            raise ValueError("eligible_amount cannot be negative")


@dataclass(frozen=True)
class AllocationLine:
    """Result of allocation to a single target."""

    target_id: str | UUID
    allocated: Money
    remaining: Money

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining.is_zero


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation result.

    ``lines`` only contains targets that received a non-zero amount.
    """

    source_amount: Money
    lines: tuple[AllocationLine, ...]
    total_allocated: Money
    unallocated: Money

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated.is_zero

    @property
    def allocation_count(self) -> int:
        return len(self.lines)


class AllocationEngine:
    """
    Allocate a payment across open obligations, oldest first.

    Pure: no I/O, no database access.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("amount", "targets"))
    def allocate_fifo(
        self,
        amount: Money,
        targets: Sequence[AllocationTarget],
    ) -> AllocationResult:
        if amount.is_negative:
            raise ValueError("Cannot allocate a negative amount")

        logger.info("allocation_started", extra={
            "amount": str(amount.amount),
            "currency": amount.currency.code,
            "target_count": len(targets),
        })

        currency = amount.currency
        for target in targets:
            if target.eligible_amount.currency != currency:
                raise CurrencyMismatchError(
                    currency.code, target.eligible_amount.currency.code
                )

        ordered = sorted(
            targets,
            key=lambda t: (t.due_date or date.max, t.priority, str(t.target_id)),
        )

        remaining_amount = amount.amount
        lines: list[AllocationLine] = []
        for target in ordered:
            if remaining_amount <= 0:
                break
            eligible = target.eligible_amount.amount
            if eligible <= 0:
                continue
            allocated = min(eligible, remaining_amount)
            remaining_amount -= allocated
            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    allocated=Money.of(allocated, currency),
                    remaining=Money.of(eligible - allocated, currency),
                )
            )

        total_allocated = sum((line.allocated.amount for line in lines), Decimal("0"))
        result = AllocationResult(
            source_amount=amount,
            lines=tuple(lines),
            total_allocated=Money.of(total_allocated, currency),
            unallocated=Money.of(remaining_amount, currency),
        )

        logger.info("allocation_completed", extra={
            "allocated": str(result.total_allocated.amount),
            "unallocated": str(result.unallocated.amount),
            "allocation_count": result.allocation_count,
        })
        return result
