from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.repositories import (
    HistoryRepository,
    MemberRepository,
    StockImportSummary,
    StockRepository,
)

from .models import HistoryEntry, Member, StockItem


def import_bills(session: Session, bills: Iterable[Mapping[str, Any]]) -> StockImportSummary:
    return StockRepository(session).import_bills(bills)


def remove_stock(session: Session, keys: Iterable[str]) -> int:
    return StockRepository(session).remove(keys)


def get_stock_item(session: Session, key: str) -> StockItem | None:
    return StockRepository(session).get(key)


def list_stock(
    session: Session,
    *,
    provider_code: str | None = None,
    min_total: Decimal | float | None = None,
    max_total: Decimal | float | None = None,
    search: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> tuple[list[StockItem], int]:
    return StockRepository(session).list_stock(
        provider_code=provider_code,
        min_total=min_total,
        max_total=max_total,
        search=search,
        limit=limit,
        offset=offset,
    )


def create_member(
    session: Session, *, name: str, zalo: str | None = None, bank: str | None = None
) -> Member:
    return MemberRepository(session).create(name=name, zalo=zalo, bank=bank)


def get_member(session: Session, member_id: int) -> Member | None:
    return MemberRepository(session).get(member_id)


def list_members(session: Session) -> list[Member]:
    return MemberRepository(session).list_members()


def list_history(
    session: Session,
    *,
    search: str | None = None,
    sold_from: datetime | None = None,
    sold_to: datetime | None = None,
    min_total: Decimal | float | None = None,
    max_total: Decimal | float | None = None,
    limit: int = 500,
    offset: int = 0,
) -> tuple[list[HistoryEntry], int]:
    return HistoryRepository(session).list_history(
        search=search,
        sold_from=sold_from,
        sold_to=sold_to,
        min_total=min_total,
        max_total=max_total,
        limit=limit,
        offset=offset,
    )
