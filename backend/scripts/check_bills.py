import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db import init_db
from lookup.errors import BatchValidationError
from lookup.service import bill_to_record, build_lookup_service, lookup_and_stock


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Look up bills for many accounts of one provider")
    parser.add_argument("provider_code", help="Provider (SKU) code sent upstream")
    parser.add_argument("account_ids", nargs="*", help="Account identifiers to look up")
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Read additional account identifiers from a file (one per line, '#' comments allowed)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Override UPSTREAM_CONCURRENCY for this run",
    )
    parser.add_argument(
        "--import-stock",
        action="store_true",
        help="Import successful lookups into stock after the batch finishes.",
    )
    parser.add_argument(
        "--skip-no-debt",
        action="store_true",
        help="With --import-stock, leave no-debt and unreadable placeholders out of stock.",
    )
    return parser.parse_args()


def read_account_file(path: Path) -> list[str]:
    accounts: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        value = line.split("#", 1)[0].strip()
        if value:
            accounts.append(value)
    return accounts


def _result_to_json(result) -> dict:
    if not result.ok:
        return {
            "ok": False,
            "account_id": result.account_id,
            "error_message": result.error_message,
            "upstream_status": result.upstream_status,
        }
    record = bill_to_record(result.bill)
    record.pop("raw_payload", None)
    return {"ok": True, "bill": record}


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.concurrency is not None:
        settings = settings.model_copy(update={"upstream_concurrency": max(1, args.concurrency)})

    account_ids = list(args.account_ids)
    if args.file:
        account_ids.extend(read_account_file(args.file))

    if args.import_stock:
        init_db()

    async with build_lookup_service(settings) as service:
        try:
            if args.import_stock:
                results, summary = await lookup_and_stock(
                    service, args.provider_code, account_ids, bills_only=args.skip_no_debt
                )
                logger.info("Stock now holds {} bills", summary.total)
            else:
                results = await service.run_batch(args.provider_code, account_ids)
        except BatchValidationError as exc:
            logger.error("Rejected batch: {}", exc)
            return 2

    print(json.dumps([_result_to_json(result) for result in results], ensure_ascii=False, indent=2))

    failed = sum(1 for result in results if not result.ok)
    return 1 if failed == len(results) else 0


def main() -> None:
    configure_logging()
    raise SystemExit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
