from __future__ import annotations

import json
import math
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.domain import BillKind, NormalizedBill

from .client import UpstreamOutcome
from .errors import ClassifiedError

NO_DATA_REASON = "No debt / no data"
PARSE_ERROR_REASON = "Parse error"
NAME_PLACEHOLDER = "-"
ADDRESS_PLACEHOLDER = "-"
REASON_LIMIT = 400

AMOUNT_FIELDS: tuple[str, ...] = ("moneyAmount", "money_amount", "amount")
NAME_FIELDS: tuple[str, ...] = ("customerName", "customer_name")
ADDRESS_FIELDS: tuple[str, ...] = ("address",)
MONTH_FIELDS: tuple[str, ...] = ("month",)

_ZERO = Decimal("0")


TRUTHY_FLAGS = frozenset({"true", "1"})


def coerce_flag(value: Any) -> bool:
    """Read an upstream ``success`` flag that may arrive as a bool, number or string."""

    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_FLAGS
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


class _BillLines(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bills: list[Any] = Field(min_length=1)


class _SuccessData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = False
    data: _BillLines

    @field_validator("success", mode="before")
    @classmethod
    def _coerce_success(cls, value: Any) -> bool:
        return coerce_flag(value)


class SuccessEnvelope(BaseModel):
    """Upstream payload that carries at least one bill line item."""

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    data: _SuccessData

    @field_validator("success", mode="before")
    @classmethod
    def _coerce_success(cls, value: Any) -> bool:
        return coerce_flag(value)

    @property
    def first_line(self) -> dict[str, Any]:
        line = self.data.data.bills[0]
        return line if isinstance(line, dict) else {}


class PartialData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: Any = None
    status_code: Any = None
    response_text: Any = None


class PartialEnvelope(BaseModel):
    """Any other upstream payload; every field is optional."""

    model_config = ConfigDict(extra="ignore")

    success: Any = None
    data: PartialData | None = None
    error: Any = None


def decode_embedded_json(value: Any) -> Any:
    """Decode a string field that may itself hold JSON; keep the raw string otherwise."""

    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except (ValueError, TypeError):
        return value


def parse_amount(value: Any) -> Decimal | None:
    """Return a finite decimal for ``value`` or ``None`` when it does not parse."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def _first_amount(line: dict[str, Any]) -> Decimal:
    for field_name in AMOUNT_FIELDS:
        amount = parse_amount(line.get(field_name))
        if amount is not None:
            return amount if amount > 0 else _ZERO
    return _ZERO


def _first_text(line: dict[str, Any], field_names: tuple[str, ...], default: str) -> str:
    for field_name in field_names:
        value = line.get(field_name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return default


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _decode_success(payload: Any) -> SuccessEnvelope | None:
    try:
        envelope = SuccessEnvelope.model_validate(payload)
    except ValidationError:
        return None
    if envelope.success and envelope.data.success:
        return envelope
    return None


def _decode_partial(payload: Any) -> PartialEnvelope:
    if not isinstance(payload, dict):
        return PartialEnvelope()
    try:
        return PartialEnvelope.model_validate(payload)
    except ValidationError:
        # ``data`` is not an object; keep whatever top-level error exists.
        return PartialEnvelope(success=payload.get("success"), error=payload.get("error"))


def derive_reason(payload: Any, *, http_status: int | None = None) -> str:
    """Pick the most specific human-readable reason for a payload without bills."""

    envelope = _decode_partial(payload)
    data = envelope.data or PartialData()

    embedded = decode_embedded_json(data.response_text)
    if embedded not in (None, ""):
        if isinstance(embedded, dict):
            nested_error = embedded.get("error")
            message = nested_error.get("message") if isinstance(nested_error, dict) else None
            message = message or embedded.get("message")
            if message:
                return str(message)[:REASON_LIMIT]
        return _dump(embedded)[:REASON_LIMIT]

    if envelope.error not in (None, "", {}, []):
        return _dump(envelope.error)[:REASON_LIMIT]

    if data.status_code not in (None, ""):
        return f"Upstream status {data.status_code}"
    if http_status is not None and not 200 <= http_status < 300:
        return f"Upstream status {http_status}"

    return NO_DATA_REASON


def placeholder_bill(
    account_id: str,
    provider_code: str,
    reason: str,
    *,
    kind: BillKind = BillKind.NO_DEBT,
    raw_payload: Any = None,
) -> NormalizedBill:
    return NormalizedBill(
        provider_code=provider_code,
        account_id=account_id,
        customer_name=f"(Account {account_id})",
        customer_address=reason or NO_DATA_REASON,
        billing_month="",
        kind=kind,
        raw_payload=raw_payload,
    )


def normalize_payload(
    payload: Any,
    account_id: str,
    provider_code: str,
    *,
    http_status: int | None = None,
) -> NormalizedBill:
    try:
        envelope = _decode_success(payload)
        if envelope is not None:
            line = envelope.first_line
            amount = _first_amount(line)
            return NormalizedBill(
                provider_code=provider_code,
                account_id=account_id,
                customer_name=_first_text(line, NAME_FIELDS, NAME_PLACEHOLDER),
                customer_address=_first_text(line, ADDRESS_FIELDS, ADDRESS_PLACEHOLDER),
                billing_month=_first_text(line, MONTH_FIELDS, ""),
                amount_previous=_ZERO,
                amount_current=amount,
                amount_total=amount,
                kind=BillKind.BILL,
                raw_payload=payload,
            )

        reason = derive_reason(payload, http_status=http_status)
        return placeholder_bill(account_id, provider_code, reason, raw_payload=payload)
    except Exception:  # noqa: BLE001 - normalization never raises
        logger.exception("Failed to normalize upstream payload for account {}", account_id)
        return placeholder_bill(
            account_id,
            provider_code,
            PARSE_ERROR_REASON,
            kind=BillKind.PARSE_ERROR,
            raw_payload=payload,
        )


def normalize_error(error: ClassifiedError, account_id: str, provider_code: str) -> NormalizedBill:
    """Turn an upstream error that means "no debt" into a placeholder bill."""

    try:
        decoded = decode_embedded_json(error.preview)
        reason = ""
        if isinstance(decoded, dict):
            reason = derive_reason(decoded, http_status=error.status)
        if not reason or reason == NO_DATA_REASON:
            reason = error.preview[:REASON_LIMIT] if error.preview else NO_DATA_REASON
        raw = decoded if isinstance(decoded, (dict, list)) else error.preview or None
        return placeholder_bill(account_id, provider_code, reason, raw_payload=raw)
    except Exception:  # noqa: BLE001 - normalization never raises
        logger.exception("Failed to normalize upstream error for account {}", account_id)
        return placeholder_bill(
            account_id,
            provider_code,
            PARSE_ERROR_REASON,
            kind=BillKind.PARSE_ERROR,
        )


def normalize_outcome(
    outcome: UpstreamOutcome | ClassifiedError,
    account_id: str,
    provider_code: str,
) -> NormalizedBill:
    if isinstance(outcome, ClassifiedError):
        return normalize_error(outcome, account_id, provider_code)
    return normalize_payload(
        outcome.payload, account_id, provider_code, http_status=outcome.http_status
    )
