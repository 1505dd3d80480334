from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from app import models  # noqa: F401
from app.core.config import Settings
from app.db import Base, build_db_components
from lookup.client import UpstreamClient

BASE_URL = "https://upstream.test/api"
PATH = "/check-electricity"


def bill_payload(
    *,
    amount: object = 1250000,
    name: str = "Nguyen Van A",
    address: str = "12 Tran Hung Dao",
    month: str = "05/2024",
) -> dict[str, object]:
    """Upstream success envelope carrying one bill line item."""

    return {
        "success": True,
        "data": {
            "success": True,
            "data": {
                "bills": [
                    {
                        "moneyAmount": amount,
                        "customerName": name,
                        "address": address,
                        "month": month,
                    }
                ]
            },
        },
    }


def json_response(payload: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


def make_client(handler, *, timeout_ms: int = 2000) -> UpstreamClient:
    return UpstreamClient(
        base_url=BASE_URL,
        path=PATH,
        timeout_ms=timeout_ms,
        user_agent="bill-desk-tests",
        transport=httpx.MockTransport(handler),
    )


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'bills.db'}",
        upstream_base_url=BASE_URL,
        upstream_path=PATH,
        api_tokens="secret-token",
        skip_auth=False,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path/'store.db'}")
    Base.metadata.create_all(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
