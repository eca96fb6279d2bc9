"""Services for the billing kernel (write side)."""

from billing_kernel.services.base import BaseService
from billing_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "BaseService",
    "SequenceCounter",
    "SequenceService",
]
