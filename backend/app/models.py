from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.domain import BillKind

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockItem(Base):
    """A bill that has been imported and is waiting to be sold."""

    __tablename__ = "stock_items"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider_code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    billing_month: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    amount_previous: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    amount_current: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    amount_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=BillKind.BILL.value)
    customer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Member(Base):
    """Counterparty that buys bills out of stock."""

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    zalo: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bank: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class HistoryEntry(Base):
    """Append-only copy of a stock row at the moment it was sold."""

    __tablename__ = "sale_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    provider_code: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    billing_month: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    amount_previous: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    amount_current: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    amount_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default=BillKind.BILL.value)
    customer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sold_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    member_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    member_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    employee_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
