from __future__ import annotations

import asyncio
import json
import random
from collections import Counter
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from app.domain import BatchFailure, BatchSuccess, BillKind
from app.models import StockItem
from conftest import bill_payload, json_response, make_client, no_sleep
from lookup.errors import BatchValidationError
from lookup.retry import RetryPolicy
from lookup.service import (
    BillLookupService,
    bill_to_record,
    build_lookup_service,
    lookup_and_stock,
    prepare_queries,
)


def account_of(request: httpx.Request) -> str:
    return json.loads(request.content)["contract_number"]


def make_service(handler, *, max_concurrent=6, max_attempts=4, max_accounts=500):
    return BillLookupService(
        make_client(handler),
        policy=RetryPolicy(max_attempts=max_attempts),
        max_concurrent=max_concurrent,
        max_accounts=max_accounts,
        sleep=no_sleep,
    )


@pytest.mark.asyncio
async def test_mixed_batch_scenario():
    """A1 has a bill, A2 has no debt (HTTP 400), A3 fails twice then succeeds."""
    attempts: Counter[str] = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        account = account_of(request)
        attempts[account] += 1
        if account == "A1":
            return json_response(bill_payload(amount=150000))
        if account == "A2":
            body = {"success": False, "error": "Khong co no"}
            return json_response(body, status_code=400)
        if attempts[account] <= 2:
            return httpx.Response(503, content=b"busy")
        return json_response(bill_payload(amount=99000, name="Tran Thi B"))

    async with make_service(handler) as service:
        results = await service.run_batch("P1", ["A1", "A2", "A3"])

    assert [result.ok for result in results] == [True, True, True]
    first, second, third = (result.bill for result in results)
    assert first.kind is BillKind.BILL
    assert first.amount_total == Decimal("150000")
    assert second.kind is BillKind.NO_DEBT
    assert second.amount_total == Decimal("0")
    assert second.customer_address == "Khong co no"
    assert third.customer_name == "Tran Thi B"
    assert third.amount_total == Decimal("99000")
    assert attempts == {"A1": 1, "A2": 1, "A3": 3}


@pytest.mark.asyncio
async def test_batch_with_bill_no_debt_and_timeout():
    """A1 has a bill, A2 answers 400 with an inner status, A3 never answers in time."""
    attempts: Counter[str] = Counter()

    async def handler(request: httpx.Request) -> httpx.Response:
        account = account_of(request)
        attempts[account] += 1
        if account == "A1":
            return json_response(bill_payload(amount=50000))
        if account == "A2":
            return json_response({"data": {"status_code": 400}}, status_code=400)
        await asyncio.sleep(0.5)
        return json_response(bill_payload())

    service = BillLookupService(
        make_client(handler, timeout_ms=50),
        policy=RetryPolicy(max_attempts=2),
        max_concurrent=3,
        max_accounts=10,
        sleep=no_sleep,
    )
    async with service:
        results = await service.run_batch("P1", ["A1", "A2", "A3"])

    assert [result.ok for result in results] == [True, True, False]
    first, second, third = results
    assert first.bill.kind is BillKind.BILL
    assert first.bill.amount_total == Decimal("50000")
    assert second.bill.kind is BillKind.NO_DEBT
    assert second.bill.amount_total == Decimal("0")
    assert second.bill.customer_address == "Upstream status 400"
    assert isinstance(third, BatchFailure)
    assert third.account_id == "A3"
    assert third.upstream_status is None
    assert "timed out" in third.error_message
    assert attempts == {"A1": 1, "A2": 1, "A3": 2}


@pytest.mark.asyncio
async def test_results_follow_input_order_under_variable_latency():
    rng = random.Random(11)
    delays = {f"ACC{i}": rng.uniform(0, 0.02) for i in range(25)}

    async def handler(request: httpx.Request) -> httpx.Response:
        account = account_of(request)
        await asyncio.sleep(delays[account])
        return json_response(bill_payload(name=account))

    accounts = list(delays)
    async with make_service(handler, max_concurrent=5) as service:
        results = await service.run_batch("P1", accounts)

    assert [result.account_id for result in results] == accounts
    assert [result.bill.customer_name for result in results] == accounts


@pytest.mark.asyncio
async def test_concurrency_ceiling_is_respected():
    in_flight = 0
    high_water = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, high_water
        in_flight += 1
        high_water = max(high_water, in_flight)
        await asyncio.sleep(0.005)
        in_flight -= 1
        return json_response(bill_payload())

    async with make_service(handler, max_concurrent=3) as service:
        await service.run_batch("P1", [f"A{i}" for i in range(15)])

    assert high_water == 3


@pytest.mark.asyncio
async def test_fatal_404_is_called_exactly_once():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404, content=b"no such route")

    async with make_service(handler) as service:
        results = await service.run_batch("P1", ["A1"])

    assert calls == 1
    failure = results[0]
    assert isinstance(failure, BatchFailure)
    assert failure.error_message == "no such route"
    assert failure.upstream_status == 404


@pytest.mark.asyncio
async def test_retryable_failure_surfaces_after_exhaustion():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, content=b"")

    async with make_service(handler, max_attempts=3) as service:
        results = await service.run_batch("P1", ["A1", "A2"])

    assert calls == 6
    assert all(isinstance(result, BatchFailure) for result in results)
    assert results[0].upstream_status == 500
    assert results[0].error_message == "Status 500"


@pytest.mark.asyncio
async def test_inner_status_400_in_success_body_is_no_debt():
    body = {"success": False, "data": {"success": False, "status_code": 400, "response_text": ""}}
    async with make_service(lambda request: json_response(body)) as service:
        result = await service.check_one("P1", "A1")

    assert isinstance(result, BatchSuccess)
    assert result.bill.kind is BillKind.NO_DEBT
    assert result.bill.customer_address == "Upstream status 400"


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failure_without_status(monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("normalizer exploded")

    monkeypatch.setattr("lookup.service.normalize_outcome", explode)
    async with make_service(lambda request: json_response(bill_payload())) as service:
        results = await service.run_batch("P1", ["A1", "A2"])

    assert [result.ok for result in results] == [False, False]
    assert results[0].error_message == "normalizer exploded"
    assert results[0].upstream_status is None


@pytest.mark.asyncio
async def test_duplicate_accounts_are_looked_up_twice():
    calls: Counter[str] = Counter()

    def handler(request: httpx.Request) -> httpx.Response:
        calls[account_of(request)] += 1
        return json_response(bill_payload())

    async with make_service(handler) as service:
        results = await service.run_batch("P1", ["A1", "A1"])

    assert len(results) == 2
    assert results[0].bill.key == results[1].bill.key == "P1::A1"
    assert calls["A1"] == 2


@pytest.mark.parametrize(
    ("provider", "accounts", "message"),
    [
        ("P1", [], "account_ids"),
        ("P1", ["  ", ""], "account_ids"),
        ("  ", ["A1"], "provider_code"),
        ("P1", [f"A{i}" for i in range(4)], "exceeds"),
    ],
)
def test_prepare_queries_rejects_invalid_batches(provider, accounts, message):
    with pytest.raises(BatchValidationError, match=message):
        prepare_queries(provider, accounts, max_accounts=3)


def test_prepare_queries_trims_and_drops_blanks():
    queries = prepare_queries(" P1 ", [" A1 ", "", None, "A2"], max_accounts=10)

    assert [(query.provider_code, query.account_id) for query in queries] == [("P1", "A1"), ("P1", "A2")]


@pytest.mark.asyncio
async def test_oversized_batch_makes_no_upstream_call():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return json_response(bill_payload())

    async with make_service(handler, max_accounts=2) as service:
        with pytest.raises(BatchValidationError):
            await service.run_batch("P1", ["A1", "A2", "A3"])

    assert calls == 0


@pytest.mark.asyncio
async def test_build_lookup_service_uses_settings(test_settings):
    client = make_client(lambda request: json_response(bill_payload()))
    service = build_lookup_service(test_settings, client)

    assert service.client is client
    assert service.max_concurrent == test_settings.upstream_concurrency
    assert service.max_accounts == test_settings.batch_max_accounts
    assert service.policy.max_attempts == test_settings.upstream_max_attempts
    assert service.policy.base_delay_ms == test_settings.upstream_backoff_base_ms
    await service.aclose()


@pytest.mark.asyncio
async def test_lookup_and_stock_imports_successful_bills(session_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        account = account_of(request)
        if account == "A2":
            return json_response({"success": False, "error": "none"}, status_code=400)
        if account == "A3":
            return httpx.Response(404, content=b"missing")
        return json_response(bill_payload(amount=5000))

    async with make_service(handler) as service:
        results, summary = await lookup_and_stock(
            service, "P1", ["A1", "A2", "A3"], session_factory=session_factory
        )

    assert [result.ok for result in results] == [True, True, False]
    assert summary.added == 2
    with session_factory() as session:
        keys = session.execute(select(StockItem.key).order_by(StockItem.key)).scalars().all()
    assert keys == ["P1::A1", "P1::A2"]


@pytest.mark.asyncio
async def test_lookup_and_stock_can_skip_placeholders(session_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        if account_of(request) == "A2":
            return json_response({"success": False}, status_code=400)
        return json_response(bill_payload())

    async with make_service(handler) as service:
        _, summary = await lookup_and_stock(
            service, "P1", ["A1", "A2"], bills_only=True, session_factory=session_factory
        )

    assert summary.added == 1
    assert summary.total == 1


def test_bill_to_record_flattens_amounts():
    from lookup.normalize import normalize_payload

    record = bill_to_record(normalize_payload(bill_payload(amount="1200.50"), "A1", "P1"))

    assert record["key"] == "P1::A1"
    assert record["amount_total"] == "1200.50"
    assert record["kind"] == "bill"
