"""Domain models representing normalized bill lookups."""

from .models import (
    BatchFailure,
    BatchResult,
    BatchSuccess,
    BillKind,
    BillQuery,
    NormalizedBill,
    make_bill_key,
)

__all__ = [
    "BatchFailure",
    "BatchResult",
    "BatchSuccess",
    "BillKind",
    "BillQuery",
    "NormalizedBill",
    "make_bill_key",
]
