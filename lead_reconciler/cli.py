"""Command line interface for reconciling an uploaded spreadsheet against a store snapshot."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import ConfigurationError, load_configuration
from .factory import build_store, build_upload_service
from .ingestion import export_failures, export_records, load_rows
from .models import LEAD, RENEWAL, UploadContext
from .orchestrator import PreconditionError
from .store import StoreError

_FAMILIES = {"leads": LEAD, "renewals": RENEWAL}


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description="Reconcile lead or renewal spreadsheets against stored household and policy records",
    )
    parser.add_argument("input", help="Path to the input spreadsheet (CSV, TSV or XLSX)")
    parser.add_argument("--family", choices=sorted(_FAMILIES), default="leads", help="Kind of rows in the input file")
    parser.add_argument("--tenant", required=True, help="Tenant (agency) id that owns the records")
    parser.add_argument("--source", required=True, help="Lead source id or renewal report source id")
    parser.add_argument("--source-label", default=None, help="Display name used in notifications")
    parser.add_argument("--actor", required=True, help="Id of the user submitting the upload")
    parser.add_argument("--actor-name", default=None, help="Display name of the submitting user")
    parser.add_argument("--store", required=True, help="Path of the JSON store snapshot to read and update")
    parser.add_argument("--config", default=None, help="Pipeline configuration file (YAML or JSON)")
    parser.add_argument("--export", default=None, help="Write all records of the family to this CSV/XLSX file")
    parser.add_argument("--failures", default=None, help="Write rows that still failed after retry to this file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        config = load_configuration(args.config) if args.config else {}
        store = build_store(config, args.store)
        service = build_upload_service(config, store)
    except (ConfigurationError, StoreError) as exc:
        logging.error("%s", exc)
        return 2

    family = _FAMILIES[args.family]
    rows = load_rows(args.input, family)
    context = UploadContext(
        tenant_id=args.tenant,
        source_id=args.source,
        actor_id=args.actor,
        actor_display_name=args.actor_name,
    )

    try:
        report = service.submit(
            rows,
            context,
            filename=Path(args.input).name,
            source_label=args.source_label or args.source,
        )
    except PreconditionError as exc:
        logging.error("Upload rejected: %s", exc)
        return 2

    snapshot = getattr(store, "wrapped", store)
    snapshot.save_snapshot(args.store)
    logging.info("Store snapshot written to %s", Path(args.store).resolve())

    if args.export:
        records = [record for record in snapshot.records() if record.tenant_id == args.tenant and record.family == family]
        export_records(records, args.export)
        logging.info("Exported %s records to %s", len(records), Path(args.export).resolve())
    if args.failures:
        export_failures(report.summary.failures, args.failures)

    summary = report.summary
    print(
        f"created={summary.created} updated={summary.updated} failed={summary.failed} "
        f"recovered_on_retry={summary.recovered_on_retry} conflicted={summary.conflicted} "
        f"dropped={report.dropped} auto_promoted={report.auto_promoted}"
    )
    return 1 if summary.failed else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
