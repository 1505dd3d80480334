"""Repository abstractions for database interactions."""

from .history_repository import HistoryRepository
from .member_repository import MemberRepository
from .stock_repository import StockRepository, coerce_amount
from .types import SaleRecord, StockImportSummary

__all__ = [
    "HistoryRepository",
    "MemberRepository",
    "SaleRecord",
    "StockImportSummary",
    "StockRepository",
    "coerce_amount",
]
