"""CSV renderings of stock and sale history."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Any

STOCK_COLUMNS: tuple[tuple[str, str], ...] = (
    ("key", "Key"),
    ("provider_code", "Provider"),
    ("account_id", "Account"),
    ("customer_name", "Customer name"),
    ("customer_address", "Address"),
    ("billing_month", "Month"),
    ("amount_previous", "Previous amount"),
    ("amount_current", "Current amount"),
    ("amount_total", "Total"),
    ("kind", "Kind"),
    ("imported_at", "Imported at"),
)

HISTORY_COLUMNS: tuple[tuple[str, str], ...] = (
    ("sold_at", "Sold at"),
    ("member_name", "Member"),
    ("employee_username", "Employee"),
    ("key", "Key"),
    ("provider_code", "Provider"),
    ("account_id", "Account"),
    ("customer_name", "Customer name"),
    ("customer_address", "Address"),
    ("billing_month", "Month"),
    ("amount_previous", "Previous amount"),
    ("amount_current", "Current amount"),
    ("amount_total", "Total"),
)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.replace(microsecond=0).isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def rows_to_csv(rows: Iterable[Any], columns: tuple[tuple[str, str], ...]) -> str:
    """Render ORM rows (or any attribute bags) with a fixed header and column order."""

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([label for _, label in columns])
    for row in rows:
        writer.writerow([_cell(getattr(row, attribute, None)) for attribute, _ in columns])
    return buffer.getvalue()


def stock_csv(items: Iterable[Any]) -> str:
    return rows_to_csv(items, STOCK_COLUMNS)


def history_csv(entries: Iterable[Any]) -> str:
    return rows_to_csv(entries, HISTORY_COLUMNS)


__all__ = ["HISTORY_COLUMNS", "STOCK_COLUMNS", "history_csv", "rows_to_csv", "stock_csv"]
