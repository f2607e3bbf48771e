"""
Command-line access to the scheduling core over the configured database.

Usage:
    salon-scheduler init-db
    salon-scheduler seed fixtures/salon.json
    salon-scheduler slots --resource salon-1 --service haircut --date 2025-03-17
    salon-scheduler book --resource salon-1 --service haircut \
        --start 2025-03-17T10:00 --name "Aino Virtanen" --phone "040 123 4567"
    salon-scheduler set-status --status confirmed BOOKING_ID [BOOKING_ID ...]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from salon_scheduler.config import settings
from salon_scheduler.errors import SchedulingError, ValidationError
from salon_scheduler.schemas.booking_schema import PaymentMethod
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering
from salon_scheduler.service import BookingService, coerce_record, error_payload
from salon_scheduler.stores.sql import SqlStore

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="salon-scheduler",
        description="Query availability and manage bookings for salon services.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=settings.storage.database_url,
        help="SQLAlchemy async URL (default: DATABASE_URL).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database tables.")

    seed = sub.add_parser("seed", help="Load operating hours and service offerings from JSON.")
    seed.add_argument("path", type=str, help="JSON file with 'operating_hours' and 'service_offerings'.")

    slots = sub.add_parser("slots", help="List free slots for a day.")
    slots.add_argument("--resource", required=True)
    slots.add_argument("--service", required=True)
    slots.add_argument("--date", required=True, help="YYYY-MM-DD")
    slots.add_argument("--exclude-past", action="store_true", help="Drop slots that already started.")

    book = sub.add_parser("book", help="Create a booking.")
    book.add_argument("--resource", required=True)
    book.add_argument("--service", required=True)
    book.add_argument("--start", required=True, help="ISO-8601 start, e.g. 2025-03-17T10:00")
    book.add_argument("--name", required=True)
    book.add_argument("--phone", required=True)
    book.add_argument("--email", default=None)
    book.add_argument("--notes", default=None)
    book.add_argument(
        "--pay-at-venue",
        action="store_true",
        help="Confirm immediately instead of waiting for an online payment.",
    )

    status = sub.add_parser("set-status", help="Apply a payment-driven status change.")
    status.add_argument("--status", required=True, choices=["confirmed", "cancelled", "failed"])
    status.add_argument("booking_ids", nargs="+")

    return parser


async def _seed(store: SqlStore, path: Path) -> int:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON in {path}: {exc.msg} (line {exc.lineno})") from exc
    # Validate every row before writing any of them.
    hours = [coerce_record(OperatingHours, raw) for raw in data.get("operating_hours", [])]
    offerings = [coerce_record(ServiceOffering, raw) for raw in data.get("service_offerings", [])]
    for record in hours:
        await store.put_operating_hours(record)
    for offering in offerings:
        await store.put_service_offering(offering)
    return len(hours) + len(offerings)


async def _run(args: argparse.Namespace) -> str:
    store = SqlStore.from_url(args.database_url, echo=settings.storage.echo)
    try:
        if args.command == "init-db":
            await store.init_db()
            return "Database initialised."
        if args.command == "seed":
            await store.init_db()
            count = await _seed(store, Path(args.path))
            return f"Seeded {count} record(s) from {args.path}."

        service = BookingService.with_store(store)
        if args.command == "slots":
            result = await service.get_available_slots({
                "resource_id": args.resource,
                "service_id": args.service,
                "date": args.date,
                "exclude_past": args.exclude_past,
            })
            return result.model_dump_json(indent=2)
        if args.command == "book":
            booking = await service.submit_booking({
                "resource_id": args.resource,
                "service_id": args.service,
                "start_datetime": args.start,
                "customer_name": args.name,
                "customer_phone": args.phone,
                "customer_email": args.email,
                "notes": args.notes,
                "payment_method": (
                    PaymentMethod.PAY_AT_VENUE if args.pay_at_venue else PaymentMethod.ONLINE
                ),
            })
            await service.ledger.drain_notifications(settings.storage.timeout_seconds)
            return booking.model_dump_json(indent=2)
        result = await service.apply_status_update(
            {"booking_ids": args.booking_ids, "new_status": args.status}
        )
        return result.model_dump_json(indent=2)
    finally:
        await store.dispose()


def main(argv=None) -> None:
    args = _build_parser().parse_args(argv)
    try:
        output = asyncio.run(_run(args))
    except SchedulingError as exc:
        payload = error_payload(exc)
        logger.error("%s: %s", payload["error"], payload["message"])
        sys.stderr.write(json.dumps(payload) + "\n")
        sys.exit(1)
    sys.stdout.write(output + "\n")


if __name__ == "__main__":
    main()
