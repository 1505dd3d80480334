from __future__ import annotations

import asyncio
from collections.abc import Iterable
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.domain import (
    BatchFailure,
    BatchResult,
    BatchSuccess,
    BillKind,
    BillQuery,
    NormalizedBill,
)

from .client import UpstreamClient
from .errors import BatchValidationError, ClassifiedError
from .limiter import gather_bounded
from .normalize import normalize_outcome
from .retry import RetryPolicy, Sleep, execute_with_retry

NO_DEBT_STATUS = 400


@contextmanager
def session_scope(factory: Callable[[], Session] | None = None) -> Session:
    if factory is None:
        from app.db import SessionLocal

        factory = SessionLocal
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def prepare_queries(
    provider_code: str | None,
    account_ids: Iterable[Any] | None,
    *,
    max_accounts: int,
) -> list[BillQuery]:
    """Trim and validate a batch request; raises before any upstream call."""

    provider = (provider_code or "").strip()
    cleaned = [str(item).strip() for item in (account_ids or []) if item is not None]
    cleaned = [item for item in cleaned if item]
    if not cleaned:
        raise BatchValidationError("account_ids must contain at least one non-empty identifier")
    if not provider:
        raise BatchValidationError("provider_code is required")
    if len(cleaned) > max_accounts:
        raise BatchValidationError(
            f"Batch of {len(cleaned)} accounts exceeds the limit of {max_accounts}"
        )
    return [BillQuery(account_id=account_id, provider_code=provider) for account_id in cleaned]


class BillLookupService:
    """Fan a batch of account lookups out to the upstream provider."""

    def __init__(
        self,
        client: UpstreamClient,
        *,
        policy: RetryPolicy | None = None,
        max_concurrent: int = 6,
        max_accounts: int = 500,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.policy = policy or RetryPolicy()
        self.max_concurrent = max(1, int(max_concurrent))
        self.max_accounts = max_accounts
        self._sleep = sleep

    async def _lookup(self, query: BillQuery) -> BatchResult:
        try:
            outcome = await execute_with_retry(
                lambda: self.client.call(query.provider_code, query.account_id),
                self.policy,
                sleep=self._sleep,
                label=f"account {query.account_id}",
            )
        except ClassifiedError as exc:
            if exc.status == NO_DEBT_STATUS:
                return BatchSuccess(bill=normalize_outcome(exc, query.account_id, query.provider_code))
            logger.warning(
                "Lookup failed account={} kind={} status={}: {}",
                query.account_id,
                exc.kind,
                exc.status,
                exc.message,
            )
            return BatchFailure(
                account_id=query.account_id,
                error_message=exc.preview or exc.message,
                upstream_status=exc.status,
            )
        return BatchSuccess(bill=normalize_outcome(outcome, query.account_id, query.provider_code))

    async def run_batch(self, provider_code: str, account_ids: Iterable[Any]) -> list[BatchResult]:
        queries = prepare_queries(provider_code, account_ids, max_accounts=self.max_accounts)
        logger.info(
            "Running bill lookup batch provider={} accounts={} concurrency={}",
            queries[0].provider_code,
            len(queries),
            self.max_concurrent,
        )
        settled = await gather_bounded(
            [lambda query=query: self._lookup(query) for query in queries],
            self.max_concurrent,
        )

        results: list[BatchResult] = []
        for query, outcome in zip(queries, settled):
            if outcome.ok:
                results.append(outcome.value)
                continue
            logger.error(
                "Unexpected lookup error account={}: {!r}", query.account_id, outcome.error
            )
            results.append(
                BatchFailure(account_id=query.account_id, error_message=str(outcome.error))
            )

        succeeded = sum(1 for result in results if result.ok)
        logger.info("Batch finished: {} ok, {} failed", succeeded, len(results) - succeeded)
        return results

    async def check_one(self, provider_code: str, account_id: str) -> BatchResult:
        results = await self.run_batch(provider_code, [account_id])
        return results[0]

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BillLookupService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def build_lookup_service(
    settings: Settings | None = None,
    client: UpstreamClient | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> BillLookupService:
    settings = settings or get_settings()
    client = client or UpstreamClient(
        base_url=str(settings.upstream_base_url),
        path=settings.upstream_path,
        timeout_ms=settings.upstream_timeout_ms,
        user_agent=settings.upstream_user_agent,
    )
    policy = RetryPolicy(
        max_attempts=settings.upstream_max_attempts,
        base_delay_ms=settings.upstream_backoff_base_ms,
        cap_ms=settings.upstream_backoff_cap_ms,
    )
    return BillLookupService(
        client,
        policy=policy,
        max_concurrent=settings.upstream_concurrency,
        max_accounts=settings.batch_max_accounts,
        sleep=sleep,
    )


def _amount(value: Decimal) -> str:
    return format(value, "f")


def bill_to_record(bill: NormalizedBill) -> dict[str, Any]:
    """Flatten a bill into the mapping accepted by the stock import."""

    return {
        "key": bill.key,
        "account_id": bill.account_id,
        "provider_code": bill.provider_code,
        "customer_name": bill.customer_name,
        "customer_address": bill.customer_address,
        "billing_month": bill.billing_month,
        "amount_previous": _amount(bill.amount_previous),
        "amount_current": _amount(bill.amount_current),
        "amount_total": _amount(bill.amount_total),
        "kind": bill.kind.value,
        "raw_payload": bill.raw_payload,
    }


def stockable_bills(results: Iterable[BatchResult], *, bills_only: bool = False) -> list[NormalizedBill]:
    bills = [result.bill for result in results if result.ok]
    if bills_only:
        bills = [bill for bill in bills if bill.kind is BillKind.BILL]
    return bills


async def lookup_and_stock(
    service: BillLookupService,
    provider_code: str,
    account_ids: Iterable[Any],
    *,
    bills_only: bool = False,
    session_factory: Callable[[], Session] | None = None,
):
    """Run a batch and import every successful bill into stock in one transaction."""

    from app import crud

    results = await service.run_batch(provider_code, account_ids)
    bills = stockable_bills(results, bills_only=bills_only)
    with session_scope(session_factory) as session:
        summary = crud.import_bills(session, [bill_to_record(bill) for bill in bills])
    logger.info(
        "Stocked {} bills ({} added, {} updated)", len(bills), summary.added, summary.updated
    )
    return results, summary


__all__ = [
    "BillLookupService",
    "bill_to_record",
    "build_lookup_service",
    "lookup_and_stock",
    "prepare_queries",
    "session_scope",
    "stockable_bills",
]
