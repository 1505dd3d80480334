"""Sales ledger data access helpers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session

from app.models import HistoryEntry, Member, StockItem


class HistoryRepository:
    """Append-only access to ``sale_history``; rows are never updated."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def record_sale(
        self,
        item: StockItem,
        *,
        member: Member,
        sold_at: datetime,
        employee_username: str | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            key=item.key,
            account_id=item.account_id,
            provider_code=item.provider_code,
            customer_name=item.customer_name,
            customer_address=item.customer_address,
            billing_month=item.billing_month,
            amount_previous=item.amount_previous,
            amount_current=item.amount_current,
            amount_total=item.amount_total,
            kind=item.kind,
            customer=item.customer,
            raw_payload=item.raw_payload,
            imported_at=item.imported_at,
            sold_at=sold_at,
            member_id=member.id,
            member_name=member.name,
            employee_username=employee_username,
        )
        self._session.add(entry)
        return entry

    # ------------------------------------------------------------------
    # Queries

    def list_history(
        self,
        *,
        search: str | None = None,
        sold_from: datetime | None = None,
        sold_to: datetime | None = None,
        min_total: Decimal | float | None = None,
        max_total: Decimal | float | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> tuple[list[HistoryEntry], int]:
        filters: list[Any] = []
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    HistoryEntry.customer_name.ilike(pattern),
                    HistoryEntry.customer_address.ilike(pattern),
                    HistoryEntry.account_id.ilike(pattern),
                    HistoryEntry.member_name.ilike(pattern),
                    HistoryEntry.employee_username.ilike(pattern),
                )
            )
        if sold_from is not None:
            filters.append(HistoryEntry.sold_at >= sold_from)
        if sold_to is not None:
            filters.append(HistoryEntry.sold_at <= sold_to)
        if min_total is not None:
            filters.append(HistoryEntry.amount_total >= min_total)
        if max_total is not None:
            filters.append(HistoryEntry.amount_total <= max_total)

        query = (
            select(HistoryEntry)
            .where(*filters)
            .order_by(desc(HistoryEntry.sold_at), desc(HistoryEntry.id))
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(HistoryEntry.id)).where(*filters)

        entries = self._session.execute(query).scalars().all()
        total = self._session.execute(total_query).scalar_one()
        return list(entries), total


__all__ = ["HistoryRepository"]
