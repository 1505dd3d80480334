"""Send one raw request to the bill lookup provider and print what came back."""

import argparse
import json

import httpx
from loguru import logger

from app.core.config import get_settings
from lookup.client import UpstreamClient

SAMPLE_ACCOUNT_ID = "PB02020047317"
SAMPLE_PROVIDER_CODE = "00906815"
PREVIEW_CHARS = 2000
REPORTED_HEADERS = ("content-type", "server", "x-powered-by", "via")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe the upstream bill lookup endpoint")
    parser.add_argument("--account-id", default=SAMPLE_ACCOUNT_ID)
    parser.add_argument("--provider-code", default=SAMPLE_PROVIDER_CODE)
    parser.add_argument("--timeout-ms", type=int, default=None)
    return parser.parse_args()


def probe(account_id: str, provider_code: str, timeout_ms: int | None = None) -> dict:
    settings = get_settings()
    base_url = str(settings.upstream_base_url).rstrip("/")
    target = base_url + "/" + settings.upstream_path.lstrip("/")
    body = UpstreamClient.build_body(provider_code, account_id)
    timeout = timeout_ms / 1000.0 if timeout_ms else settings.upstream_timeout_seconds

    report: dict = {"target": target, "sent_body": body}
    try:
        response = httpx.post(
            target,
            json=body,
            headers={"User-Agent": settings.upstream_user_agent},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        logger.warning("Probe request failed: {}", exc)
        report["fetch_error"] = f"{exc.__class__.__name__}: {exc}"
        return report

    report["status"] = response.status_code
    report["response_headers"] = {
        name: response.headers[name] for name in REPORTED_HEADERS if name in response.headers
    }
    report["preview"] = response.text[:PREVIEW_CHARS]
    try:
        report["json"] = response.json()
    except ValueError:
        logger.info("Upstream body is not JSON")
    return report


def main() -> None:
    args = parse_args()
    report = probe(args.account_id, args.provider_code, args.timeout_ms)
    print(json.dumps(report, ensure_ascii=False, indent=2))
    if "fetch_error" in report:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
