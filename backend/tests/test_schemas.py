from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from app import schemas
from app.domain import BatchFailure, BatchSuccess, BillKind, NormalizedBill


def test_bill_coerces_decimal_fields():
    """Verify that Decimal amounts are correctly coerced to floats."""
    bill = schemas.Bill(
        key="P1::A1",
        provider_code="P1",
        account_id="A1",
        customer_name="Nguyen Van A",
        customer_address="Hanoi",
        amount_current=Decimal("1250000.00"),
        amount_total=Decimal("1250000.00"),
    )
    assert isinstance(bill.amount_total, float)
    assert bill.amount_total == 1250000.0
    assert bill.amount_previous == 0.0


def test_stock_item_coerces_numeric_fields():
    item = schemas.StockItem(
        key="P1::A1",
        account_id="A1",
        provider_code="P1",
        customer_name="n",
        customer_address="a",
        amount_previous=Decimal("1.50"),
        amount_current=Decimal("2.25"),
        amount_total=Decimal("3.75"),
        kind="bill",
        imported_at=datetime.now(),
        updated_at=datetime.now(),
    )
    assert isinstance(item.amount_previous, float)
    assert item.amount_total == 3.75


def test_batch_result_converts_domain_objects():
    bill = NormalizedBill(
        provider_code="P1",
        account_id="A1",
        customer_name="(Account A1)",
        customer_address="No debt / no data",
        kind=BillKind.NO_DEBT,
    )

    success = schemas.batch_result(BatchSuccess(bill=bill))
    failure = schemas.batch_result(BatchFailure(account_id="A2", error_message="boom", upstream_status=502))

    assert success.model_dump(mode="json")["bill"]["key"] == "P1::A1"
    assert success.model_dump(mode="json")["bill"]["kind"] == "no_debt"
    assert success.ok is True
    assert failure.model_dump() == {
        "ok": False,
        "account_id": "A2",
        "error_message": "boom",
        "upstream_status": 502,
    }


def test_request_aliases():
    bulk = schemas.BulkCheckRequest.model_validate({"sku": "P1", "contract_numbers": ["A1", "A2"]})
    single = schemas.CheckRequest.model_validate({"sku": "P1", "contract_number": "A1"})
    stock = schemas.StockBillIn.model_validate(
        {"account": "A1", "provider_id": "P1", "name": "Lan", "total": "100", "raw": {"x": 1}}
    )

    assert (bulk.provider_code, bulk.account_ids) == ("P1", ["A1", "A2"])
    assert (single.provider_code, single.account_id) == ("P1", "A1")
    assert stock.account_id == "A1"
    assert stock.provider_code == "P1"
    assert stock.customer_name == "Lan"
    assert stock.amount_total == "100"
    assert stock.raw_payload == {"x": 1}
