"""Stock import, listing and removal on top of the stock repository."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from app.models import StockItem
from app.repositories import StockImportSummary, StockRepository


class StockValidationError(ValueError):
    """Raised when a stock or sale request is rejected before touching the database."""


@dataclass(slots=True)
class StockQuery:
    provider_code: str | None = None
    min_total: Decimal | None = None
    max_total: Decimal | None = None
    search: str | None = None
    limit: int = 200
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        return {
            "provider_code": self.provider_code,
            "min_total": self.min_total,
            "max_total": self.max_total,
            "search": self.search,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class StockQueryResult:
    total: int
    items: Sequence[StockItem]


class StockService:
    def __init__(self, session: Session, *, max_import: int = 500):
        self._session = session
        self._repo = StockRepository(session)
        self._max_import = max_import

    def import_bills(self, bills: Sequence[Mapping[str, Any]]) -> StockImportSummary:
        if not bills:
            raise StockValidationError("bills must contain at least one item")
        if len(bills) > self._max_import:
            raise StockValidationError(
                f"Import of {len(bills)} bills exceeds the limit of {self._max_import}"
            )
        try:
            summary = self._repo.import_bills(bills)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        if summary.skipped:
            logger.warning("Skipped {} stock entries without account or provider", summary.skipped)
        logger.info(
            "Imported stock: {} added, {} updated, {} in store",
            summary.added,
            summary.updated,
            summary.total,
        )
        return summary

    def remove(self, keys: Sequence[str]) -> int:
        if not keys:
            raise StockValidationError("keys must contain at least one item")
        try:
            removed = self._repo.remove(keys)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("Removed {} of {} requested stock keys", removed, len(keys))
        return removed

    def list_stock(self, query: StockQuery) -> StockQueryResult:
        items, total = self._repo.list_stock(**query.to_repository_kwargs())
        return StockQueryResult(total=total, items=items)


__all__ = ["StockQuery", "StockQueryResult", "StockService", "StockValidationError"]
