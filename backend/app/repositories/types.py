"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass, field

from app.models import HistoryEntry


@dataclass(slots=True)
class StockImportSummary:
    """Counts reported back after upserting a batch of bills into stock."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    total: int = 0


@dataclass(slots=True)
class SaleRecord:
    """Rows written to the ledger by one sale, plus the keys that were not in stock."""

    sold: list[HistoryEntry] = field(default_factory=list)
    missing_keys: list[str] = field(default_factory=list)


__all__ = ["SaleRecord", "StockImportSummary"]
