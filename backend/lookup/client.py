from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings

from .errors import FatalError, RetryableError, truncate_preview

_RETRYABLE_STATUS_CODES = frozenset({429})


@dataclass(frozen=True, slots=True)
class UpstreamOutcome:
    """Result of one upstream attempt that produced a decodable body."""

    payload: Any
    http_status: int | None
    transport_error: str | None = None


def is_retryable_status(status: int) -> bool:
    return status in _RETRYABLE_STATUS_CODES or status >= 500


class UpstreamClient:
    """Thin async wrapper around the bill lookup provider endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        path: str | None = None,
        timeout_ms: int | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.upstream_base_url)
        self.path = path or settings.upstream_path
        self.timeout_ms = timeout_ms or settings.upstream_timeout_ms
        self.user_agent = user_agent or settings.upstream_user_agent
        # httpx's own timeouts are per phase; the whole attempt is bounded in call().
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_ms / 1000.0,
            transport=transport,
            headers={"User-Agent": self.user_agent},
        )

    @staticmethod
    def build_body(provider_code: str, account_id: str) -> dict[str, str]:
        return {"contract_number": account_id, "sku": provider_code}

    async def _post(self, provider_code: str, account_id: str) -> httpx.Response:
        return await self.client.post(
            self.path,
            json=self.build_body(provider_code, account_id),
            headers={"Content-Type": "application/json"},
        )

    async def call(
        self,
        provider_code: str,
        account_id: str,
        timeout_ms: int | None = None,
    ) -> UpstreamOutcome:
        timeout_ms = timeout_ms or self.timeout_ms
        logger.debug("Upstream POST {} account={} sku={}", self.path, account_id, provider_code)
        try:
            response = await asyncio.wait_for(
                self._post(provider_code, account_id), timeout=timeout_ms / 1000.0
            )
        except asyncio.TimeoutError as exc:
            raise RetryableError(f"Upstream timed out after {timeout_ms}ms") from exc
        except httpx.TimeoutException as exc:
            raise RetryableError(f"Upstream timed out: {exc.__class__.__name__}") from exc
        except httpx.RequestError as exc:
            raise RetryableError(
                f"Upstream transport error: {exc.__class__.__name__}: {exc}"
            ) from exc

        text = response.text
        status = response.status_code

        if not response.is_success:
            preview = truncate_preview(text) or f"Status {status}"
            logger.warning(
                "Upstream non-ok account={} status={} preview={}",
                account_id,
                status,
                preview[:200],
            )
            error_cls = RetryableError if is_retryable_status(status) else FatalError
            raise error_cls(f"Upstream {status}: {preview}", status=status, preview=preview)

        try:
            payload = json.loads(text or "{}")
        except json.JSONDecodeError as exc:
            preview = truncate_preview(text) or "<empty>"
            logger.warning(
                "Upstream invalid JSON account={} status={} preview={}",
                account_id,
                status,
                preview[:200],
            )
            raise FatalError(
                "Upstream returned non-JSON response", status=status, preview=preview
            ) from exc

        return UpstreamOutcome(payload=payload, http_status=status)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
