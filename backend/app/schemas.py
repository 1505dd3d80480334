from datetime import datetime
from typing import Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.domain import BillKind


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


class BulkCheckRequest(BaseModel):
    provider_code: str = Field(validation_alias=AliasChoices("provider_code", "sku"))
    account_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("account_ids", "contract_numbers"),
    )


class CheckRequest(BaseModel):
    provider_code: str = Field(validation_alias=AliasChoices("provider_code", "sku"))
    account_id: str = Field(validation_alias=AliasChoices("account_id", "contract_number"))


class Bill(BaseModel):
    key: str
    provider_code: str
    account_id: str
    customer_name: str
    customer_address: str
    billing_month: str = ""
    amount_previous: float = 0.0
    amount_current: float = 0.0
    amount_total: float = 0.0
    kind: BillKind = BillKind.BILL
    raw_payload: Any = None

    model_config = {"from_attributes": True}

    @field_validator("amount_previous", "amount_current", "amount_total", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float | None:
        return _to_float(value)


class BatchSuccess(BaseModel):
    ok: Literal[True] = True
    bill: Bill

    model_config = {"from_attributes": True}


class BatchFailure(BaseModel):
    ok: Literal[False] = False
    account_id: str
    error_message: str
    upstream_status: int | None = None

    model_config = {"from_attributes": True}


BatchResult = Union[BatchSuccess, BatchFailure]


def batch_result(result: Any) -> BatchResult:
    """Convert a domain batch result into its response schema."""

    if result.ok:
        return BatchSuccess.model_validate(result)
    return BatchFailure.model_validate(result)


class StockBillIn(BaseModel):
    """Bill-shaped entry accepted by the stock import; incomplete entries are skipped."""

    key: str | None = None
    account_id: str | None = Field(
        default=None, validation_alias=AliasChoices("account_id", "account", "contract_number")
    )
    provider_code: str | None = Field(
        default=None, validation_alias=AliasChoices("provider_code", "provider_id", "sku")
    )
    customer_name: str | None = Field(
        default=None, validation_alias=AliasChoices("customer_name", "name")
    )
    customer_address: str | None = Field(
        default=None, validation_alias=AliasChoices("customer_address", "address")
    )
    billing_month: str | None = Field(
        default=None, validation_alias=AliasChoices("billing_month", "month")
    )
    amount_previous: Any = None
    amount_current: Any = None
    amount_total: Any = Field(default=None, validation_alias=AliasChoices("amount_total", "total"))
    kind: str | None = None
    customer: str | None = None
    raw_payload: Any = Field(default=None, validation_alias=AliasChoices("raw_payload", "raw"))


class StockImportRequest(BaseModel):
    bills: list[StockBillIn] = Field(default_factory=list)


class StockImportResponse(BaseModel):
    ok: bool = True
    added: int
    updated: int
    skipped: int = 0
    total: int


class StockItem(BaseModel):
    key: str
    account_id: str
    provider_code: str
    customer_name: str
    customer_address: str
    billing_month: str = ""
    amount_previous: float = 0.0
    amount_current: float = 0.0
    amount_total: float = 0.0
    kind: str
    customer: str | None = None
    imported_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("amount_previous", "amount_current", "amount_total", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float | None:
        return _to_float(value)


class StockList(BaseModel):
    total: int
    items: list[StockItem]


class StockRemoveRequest(BaseModel):
    keys: list[str] = Field(default_factory=list)


class StockRemoveResponse(BaseModel):
    ok: bool = True
    removed: int


class MemberCreate(BaseModel):
    name: str
    zalo: str | None = None
    bank: str | None = None


class MemberUpdate(BaseModel):
    name: str | None = None
    zalo: str | None = None
    bank: str | None = None


class Member(BaseModel):
    id: int
    name: str
    zalo: str | None = None
    bank: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SaleRequest(BaseModel):
    member_id: int
    keys: list[str] = Field(default_factory=list)
    employee_username: str | None = None


class HistoryItem(BaseModel):
    id: int
    key: str
    account_id: str
    provider_code: str
    customer_name: str
    customer_address: str
    billing_month: str = ""
    amount_previous: float = 0.0
    amount_current: float = 0.0
    amount_total: float = 0.0
    kind: str
    sold_at: datetime
    member_id: int | None = None
    member_name: str
    employee_username: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("amount_previous", "amount_current", "amount_total", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float | None:
        return _to_float(value)


class SaleResponse(BaseModel):
    ok: bool = True
    sold_count: int
    sold: list[HistoryItem] = Field(default_factory=list)
    missing_keys: list[str] = Field(default_factory=list)


class HistoryList(BaseModel):
    total: int
    items: list[HistoryItem]
