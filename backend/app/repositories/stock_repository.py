"""Stock (inventory) data access helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from sqlalchemy import delete, desc, func, or_, select
from sqlalchemy.orm import Session

from app.domain import BillKind, make_bill_key
from app.models import StockItem, utcnow

from .types import StockImportSummary

_NON_NUMERIC = re.compile(r"[^\d.\-]")
_ZERO = Decimal("0")


def coerce_amount(value: Any) -> Decimal:
    """Leniently parse an amount such as ``"1,250,000 d"``; anything unusable is 0."""

    if value is None or isinstance(value, bool):
        return _ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip()
        try:
            amount = Decimal(text)
        except (InvalidOperation, ValueError):
            try:
                amount = Decimal(_NON_NUMERIC.sub("", text) or "0")
            except (InvalidOperation, ValueError):
                return _ZERO
    if not amount.is_finite() or amount < 0:
        return _ZERO
    return amount


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


class StockRepository:
    """Encapsulate all stock persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def import_bills(self, bills: Iterable[Mapping[str, Any]]) -> StockImportSummary:
        summary = StockImportSummary()
        now = utcnow()
        for bill in bills:
            account_id = _text(bill.get("account_id"))
            provider_code = _text(bill.get("provider_code"))
            if not account_id or not provider_code:
                summary.skipped += 1
                continue
            key = _text(bill.get("key")) or make_bill_key(provider_code, account_id)

            existing = self._session.get(StockItem, key)
            if existing is None:
                existing = StockItem(key=key, imported_at=now)
                self._session.add(existing)
                summary.added += 1
            else:
                summary.updated += 1

            existing.account_id = account_id
            existing.provider_code = provider_code
            existing.customer_name = _text(bill.get("customer_name")) or existing.customer_name or ""
            existing.customer_address = (
                _text(bill.get("customer_address")) or existing.customer_address or ""
            )
            existing.billing_month = _text(bill.get("billing_month")) or existing.billing_month or ""
            existing.amount_previous = coerce_amount(bill.get("amount_previous"))
            existing.amount_current = coerce_amount(bill.get("amount_current"))
            existing.amount_total = coerce_amount(bill.get("amount_total"))
            existing.kind = _text(bill.get("kind")) or BillKind.BILL.value
            if bill.get("customer") is not None:
                existing.customer = _text(bill.get("customer")) or None
            if bill.get("raw_payload") is not None:
                existing.raw_payload = bill.get("raw_payload")
            existing.updated_at = now

        self._session.flush()
        summary.total = self.count()
        return summary

    def remove(self, keys: Iterable[str]) -> int:
        wanted = sorted({key for key in keys if key})
        if not wanted:
            return 0
        result = self._session.execute(delete(StockItem).where(StockItem.key.in_(wanted)))
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Queries

    def get(self, key: str) -> StockItem | None:
        return self._session.get(StockItem, key)

    def get_many(self, keys: Sequence[str]) -> dict[str, StockItem]:
        if not keys:
            return {}
        rows = self._session.execute(select(StockItem).where(StockItem.key.in_(list(keys))))
        return {item.key: item for item in rows.scalars().all()}

    def count(self) -> int:
        return self._session.execute(select(func.count(StockItem.key))).scalar_one()

    def list_stock(
        self,
        *,
        provider_code: str | None = None,
        min_total: Decimal | float | None = None,
        max_total: Decimal | float | None = None,
        search: str | None = None,
        limit: int = 200,
        offset: int = 0,
    ) -> tuple[list[StockItem], int]:
        filters: list[Any] = []
        if provider_code:
            filters.append(StockItem.provider_code == provider_code)
        if min_total is not None:
            filters.append(StockItem.amount_total >= min_total)
        if max_total is not None:
            filters.append(StockItem.amount_total <= max_total)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    StockItem.customer_name.ilike(pattern),
                    StockItem.customer_address.ilike(pattern),
                    StockItem.account_id.ilike(pattern),
                )
            )

        query = (
            select(StockItem)
            .where(*filters)
            .order_by(desc(StockItem.imported_at), StockItem.key)
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(StockItem.key)).where(*filters)

        items = self._session.execute(query).scalars().all()
        total = self._session.execute(total_query).scalar_one()
        return list(items), total


__all__ = ["StockRepository", "coerce_amount"]
