"""CLI interface for the WebPAC engine."""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv

from webpac.catalog import CatalogScraper
from webpac.client import WebpacClient, create_client
from webpac.config import ILSConfig
from webpac.parser import (
    classify_hold_response,
    parse_bib_number,
    parse_fines,
    parse_holds,
    parse_loans,
    parse_payment_result,
    parse_renewals,
)
from webpac.profiles import PAYMENT_FLOWS
from webpac.transport import Page, TransportFailure

logger = logging.getLogger(__name__)


def json_serializer(obj):
    """JSON serializer for objects not serializable by default."""
    if isinstance(obj, date):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def output_json(data):
    """Output data as JSON to stdout."""
    if isinstance(data, TransportFailure):
        error(f"Catalog unreachable: {data.target}")
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    elif isinstance(data, list) and data and hasattr(data[0], "model_dump"):
        data = [item.model_dump(mode="json") for item in data]
    print(json.dumps(data, default=json_serializer, indent=2))


def error(message: str):
    """Output error to stderr and exit."""
    print(json.dumps({"error": message}), file=sys.stderr)
    sys.exit(1)


def page_summary(page: Page | TransportFailure) -> dict:
    if isinstance(page, TransportFailure):
        error(f"Catalog unreachable: {page.target}")
    return {"code": page.code}


async def cmd_checkouts(client: WebpacClient, args):
    """List checked out items."""
    loans = await client.list_loans(sort_by_due=not args.unsorted, resolve_bibs=not args.no_bibs)
    if isinstance(loans, TransportFailure):
        output_json(loans)

    if args.due_soon:
        cutoff = date.today() + timedelta(days=args.due_soon)
        loans = [loan for loan in loans if loan.due_date and loan.due_date <= cutoff]

    if args.overdue:
        today = date.today()
        loans = [loan for loan in loans if loan.due_date and loan.due_date < today]

    output_json(loans)


async def cmd_holds(client: WebpacClient, args):
    """List holds."""
    holds = await client.list_holds()
    if isinstance(holds, TransportFailure):
        output_json(holds)

    if args.ready:
        holds = [h for h in holds if "ready" in h.status.lower()]

    output_json(holds)


async def cmd_hold(client: WebpacClient, args):
    """Place a hold on a title."""
    result = await client.place_hold(args.bib_number, item_handle=args.item, pickup_location=args.pickup)
    output_json(result)


async def cmd_cancel(client: WebpacClient, args):
    """Cancel holds."""
    page = await client.cancel_holds(args.handles)
    output_json({"cancelled": args.handles, **page_summary(page)})


async def cmd_renew(client: WebpacClient, args):
    """Renew checked out items."""
    if args.all:
        output_json(await client.renew_items())
    elif args.items:
        items = {}
        for pair in args.items:
            handle, sep, item = pair.partition("=")
            if not sep:
                error(f"Expected HANDLE=ITEM, got {pair!r}")
            items[handle] = item
        output_json(await client.renew_items(items))
    else:
        error("Must specify --all or HANDLE=ITEM pairs")


async def cmd_fines(client: WebpacClient, args):
    """List fines."""
    fines = await client.get_fines()
    if isinstance(fines, TransportFailure):
        output_json(fines)
    output_json({**fines.model_dump(mode="json"), "total": fines.total})


async def cmd_bib(scraper: CatalogScraper, args):
    """Show a bib record."""
    record = await scraper.scrape_bib(
        args.bib_number, skip_cover=True, include_suppressed=args.include_suppressed
    )
    if record is None:
        error(f"Record {args.bib_number} not found")
    output_json(record)


async def cmd_status(scraper: CatalogScraper, args):
    """Show copy availability for a bib record."""
    output_json(await scraper.item_status(args.bib_number))


EXTRACTORS = ("loans", "holds", "hold-response", "renewals", "fines", "payment", "bib-number", "xrecord", "holdings")


async def cmd_extract(config: ILSConfig, args):
    """Run an extractor over a saved page, without touching the network."""
    text = Path(args.file).read_text()
    body = Page.parse(text).body if args.raw else text
    profile = config.profile
    flow = PAYMENT_FLOWS[config.payment_protocol]

    if args.kind == "loans":
        output_json(parse_loans(body, profile))
    elif args.kind == "holds":
        output_json(parse_holds(body, profile))
    elif args.kind == "hold-response":
        output_json(classify_hold_response(body, profile))
    elif args.kind == "renewals":
        output_json(parse_renewals(body, profile))
    elif args.kind == "fines":
        output_json(parse_fines(body, flow))
    elif args.kind == "payment":
        output_json(parse_payment_result(body, flow))
    elif args.kind == "bib-number":
        output_json({"bib_number": parse_bib_number(body, profile)})
    else:
        scraper = CatalogScraper(config)
        try:
            if args.kind == "xrecord":
                record = await scraper.parse_xrecord(args.bib_number or "", body, skip_cover=True)
                output_json(record.model_dump(mode="json") if record else None)
            else:
                output_json(scraper.parse_availability(body))
        finally:
            await scraper.close()


async def run_command(args):
    """Run the specified command."""
    load_dotenv()

    if args.target == "offline":
        # Extraction never connects, so any host will do
        host = os.getenv("WEBPAC_HOST") or "localhost"
        await args.func(ILSConfig.from_env(host=host), args)
        return

    config = ILSConfig.from_env()
    if args.target == "catalog":
        async with CatalogScraper(config) as scraper:
            await args.func(scraper, args)
        return

    client = await create_client(config)
    async with client:
        await args.func(client, args)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="webpac",
        description="Patron account and catalog access for III Millennium WebPAC",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log requests to stderr")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # checkouts command
    checkouts_parser = subparsers.add_parser("checkouts", help="List checked out items")
    checkouts_parser.add_argument("--unsorted", action="store_true", help="Keep the catalog's default order")
    checkouts_parser.add_argument("--no-bibs", action="store_true", help="Skip resolving bib numbers")
    checkouts_parser.add_argument("--due-soon", type=int, metavar="DAYS", help="Only show items due within N days")
    checkouts_parser.add_argument("--overdue", action="store_true", help="Only show overdue items")
    checkouts_parser.set_defaults(func=cmd_checkouts, target="patron")

    # holds command
    holds_parser = subparsers.add_parser("holds", help="List holds")
    holds_parser.add_argument("--ready", action="store_true", help="Only show holds ready for pickup")
    holds_parser.set_defaults(func=cmd_holds, target="patron")

    # hold command
    hold_parser = subparsers.add_parser("hold", help="Place a hold on a title")
    hold_parser.add_argument("bib_number", help="Bib number, without the leading b")
    hold_parser.add_argument("--item", help="Copy handle, when the catalog asks for one")
    hold_parser.add_argument("--pickup", help="Pickup location code")
    hold_parser.set_defaults(func=cmd_hold, target="patron")

    # cancel command
    cancel_parser = subparsers.add_parser("cancel", help="Cancel holds")
    cancel_parser.add_argument("handles", nargs="+", help="Hold handles, as listed by 'holds'")
    cancel_parser.set_defaults(func=cmd_cancel, target="patron")

    # renew command
    renew_parser = subparsers.add_parser("renew", help="Renew checked out items")
    renew_parser.add_argument("items", nargs="*", metavar="HANDLE=ITEM", help="Loan handle and item number")
    renew_parser.add_argument("--all", action="store_true", help="Renew everything")
    renew_parser.set_defaults(func=cmd_renew, target="patron")

    # fines command
    fines_parser = subparsers.add_parser("fines", help="List fines")
    fines_parser.set_defaults(func=cmd_fines, target="patron")

    # bib command
    bib_parser = subparsers.add_parser("bib", help="Show a bib record")
    bib_parser.add_argument("bib_number", help="Bib number, without the leading b")
    bib_parser.add_argument("--include-suppressed", action="store_true", help="Return suppressed records too")
    bib_parser.set_defaults(func=cmd_bib, target="catalog")

    # status command
    status_parser = subparsers.add_parser("status", help="Show copy availability for a title")
    status_parser.add_argument("bib_number", help="Bib number, without the leading b")
    status_parser.set_defaults(func=cmd_status, target="catalog")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Parse a saved page offline")
    extract_parser.add_argument("kind", choices=EXTRACTORS, help="Which extractor to run")
    extract_parser.add_argument("file", help="Saved page or raw HTTP capture")
    extract_parser.add_argument("--raw", action="store_true", help="File is a raw HTTP capture with headers")
    extract_parser.add_argument("--bib-number", help="Bib number for xrecord pages")
    extract_parser.set_defaults(func=cmd_extract, target="offline")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        asyncio.run(run_command(args))
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        error(str(e))


if __name__ == "__main__":
    main()
