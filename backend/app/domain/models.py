"""Typed domain representations shared by lookups, persistence, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Union

KEY_SEPARATOR = "::"


def make_bill_key(provider_code: str, account_id: str) -> str:
    return f"{provider_code}{KEY_SEPARATOR}{account_id}"


class BillKind(str, Enum):
    BILL = "bill"
    NO_DEBT = "no_debt"
    PARSE_ERROR = "parse_error"


@dataclass(frozen=True, slots=True)
class BillQuery:
    """One account lookup request inside a batch."""

    account_id: str
    provider_code: str

    @property
    def key(self) -> str:
        return make_bill_key(self.provider_code, self.account_id)


@dataclass(frozen=True, slots=True)
class NormalizedBill:
    """Canonical bill produced once per account per batch run.

    Placeholder bills (no data, or a payload that could not be read) share this
    shape with zero amounts, a human-readable reason in ``customer_address`` and
    a ``kind`` other than :attr:`BillKind.BILL`.
    """

    provider_code: str
    account_id: str
    customer_name: str
    customer_address: str
    billing_month: str = ""
    amount_previous: Decimal = Decimal("0")
    amount_current: Decimal = Decimal("0")
    amount_total: Decimal = Decimal("0")
    kind: BillKind = BillKind.BILL
    raw_payload: Any = None

    @property
    def key(self) -> str:
        return make_bill_key(self.provider_code, self.account_id)


@dataclass(frozen=True, slots=True)
class BatchSuccess:
    bill: NormalizedBill
    ok: Literal[True] = field(default=True, init=False)

    @property
    def account_id(self) -> str:
        return self.bill.account_id


@dataclass(frozen=True, slots=True)
class BatchFailure:
    account_id: str
    error_message: str
    upstream_status: int | None = None
    ok: Literal[False] = field(default=False, init=False)


BatchResult = Union[BatchSuccess, BatchFailure]
