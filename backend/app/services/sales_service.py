"""Members, sales and the append-only history ledger."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Any

from dateutil.parser import isoparse
from loguru import logger
from sqlalchemy.orm import Session

from app.models import HistoryEntry, Member, utcnow
from app.repositories import HistoryRepository, MemberRepository, SaleRecord, StockRepository

from .stock_service import StockValidationError

MEMBER_NAME_MAX = 200
MEMBER_ZALO_MAX = 50
MEMBER_BANK_MAX = 200


class MemberNotFoundError(LookupError):
    def __init__(self, member_id: int) -> None:
        super().__init__(f"Member {member_id} not found")
        self.member_id = member_id


class MemberValidationError(ValueError):
    pass


def parse_date_bound(value: str | None, *, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date or timestamp filter into an aware UTC datetime.

    A bare date (``2024-05-01``) covers the whole day: it maps to midnight for a
    lower bound and to the last microsecond of the day for an upper bound.
    Naive timestamps are taken as UTC. Raises ``ValueError`` on garbage.
    """

    if value is None or not value.strip():
        return None
    text = value.strip()
    parsed = isoparse(text)
    if end_of_day and len(text) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(slots=True)
class HistoryQuery:
    search: str | None = None
    sold_from: datetime | None = None
    sold_to: datetime | None = None
    min_total: Decimal | None = None
    max_total: Decimal | None = None
    limit: int = 500
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        return {
            "search": self.search,
            "sold_from": self.sold_from,
            "sold_to": self.sold_to,
            "min_total": self.min_total,
            "max_total": self.max_total,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class HistoryQueryResult:
    total: int
    items: Sequence[HistoryEntry]


def _clean_optional(value: str | None, *, field_name: str, max_length: int) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if len(cleaned) > max_length:
        raise MemberValidationError(f"{field_name} must be at most {max_length} characters")
    return cleaned or None


class SalesService:
    """Member bookkeeping and the stock-to-history sale transaction."""

    def __init__(self, session: Session, *, max_sale_keys: int = 200):
        self._session = session
        self._stock_repo = StockRepository(session)
        self._member_repo = MemberRepository(session)
        self._history_repo = HistoryRepository(session)
        self._max_sale_keys = max_sale_keys

    # ------------------------------------------------------------------
    # Members

    def list_members(self) -> list[Member]:
        return self._member_repo.list_members()

    def get_member(self, member_id: int) -> Member:
        member = self._member_repo.get(member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def create_member(self, *, name: str, zalo: str | None = None, bank: str | None = None) -> Member:
        cleaned_name = _clean_optional(name, field_name="name", max_length=MEMBER_NAME_MAX)
        if not cleaned_name:
            raise MemberValidationError("name is required")
        try:
            member = self._member_repo.create(
                name=cleaned_name,
                zalo=_clean_optional(zalo, field_name="zalo", max_length=MEMBER_ZALO_MAX),
                bank=_clean_optional(bank, field_name="bank", max_length=MEMBER_BANK_MAX),
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("Created member {} ({})", member.id, member.name)
        return member

    def update_member(
        self,
        member_id: int,
        *,
        name: str | None = None,
        zalo: str | None = None,
        bank: str | None = None,
    ) -> Member:
        member = self.get_member(member_id)
        if name is not None:
            name = _clean_optional(name, field_name="name", max_length=MEMBER_NAME_MAX)
            if not name:
                raise MemberValidationError("name cannot be blank")
        # An empty string clears an optional field; None leaves it untouched.
        if zalo is not None:
            zalo = _clean_optional(zalo, field_name="zalo", max_length=MEMBER_ZALO_MAX) or ""
        if bank is not None:
            bank = _clean_optional(bank, field_name="bank", max_length=MEMBER_BANK_MAX) or ""
        try:
            self._member_repo.update(member, name=name, zalo=zalo, bank=bank)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return member

    # ------------------------------------------------------------------
    # Sales

    def sell(
        self,
        member_id: int,
        keys: Sequence[str],
        *,
        employee_username: str | None = None,
    ) -> SaleRecord:
        wanted = list(dict.fromkeys(key.strip() for key in keys if key and key.strip()))
        if not wanted:
            raise StockValidationError("keys must contain at least one item")
        if len(wanted) > self._max_sale_keys:
            raise StockValidationError(
                f"Sale of {len(wanted)} keys exceeds the limit of {self._max_sale_keys}"
            )

        member = self.get_member(member_id)
        record = SaleRecord()
        sold_at = utcnow()
        try:
            items = self._stock_repo.get_many(wanted)
            for key in wanted:
                item = items.get(key)
                if item is None:
                    record.missing_keys.append(key)
                    continue
                record.sold.append(
                    self._history_repo.record_sale(
                        item,
                        member=member,
                        sold_at=sold_at,
                        employee_username=employee_username,
                    )
                )
                self._session.delete(item)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "Sold {} bills to member {} ({} missing)",
            len(record.sold),
            member.id,
            len(record.missing_keys),
        )
        return record

    def list_history(self, query: HistoryQuery) -> HistoryQueryResult:
        entries, total = self._history_repo.list_history(**query.to_repository_kwargs())
        return HistoryQueryResult(total=total, items=entries)


__all__ = [
    "HistoryQuery",
    "HistoryQueryResult",
    "MemberNotFoundError",
    "MemberValidationError",
    "SalesService",
    "parse_date_bound",
]
