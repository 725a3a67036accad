#!/usr/bin/env python3
"""Command-line entry point: analyze, list, show, delete and watch reviews."""
from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from resurev.log import get_logger

log = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="run_review", description="AI resume reviews")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="submit a resume for review")
    analyze.add_argument("resume", type=Path)
    analyze.add_argument("--title", required=True, help="target job title")
    analyze.add_argument("--company", default="")
    analyze.add_argument("--description", default="", help="job description text")
    analyze.add_argument("--description-file", type=Path, help="read the job description from a file")

    listing = sub.add_parser("list", help="list stored reviews")
    listing.add_argument("--search", default="")
    listing.add_argument("--status", default="all")
    listing.add_argument("--sort", default="newest", choices=["newest", "oldest", "score_desc", "score_asc"])
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--page-size", type=int)

    show = sub.add_parser("show", help="print one review")
    show.add_argument("record_id")

    delete = sub.add_parser("delete", help="delete a review")
    delete.add_argument("record_id")

    watch = sub.add_parser("watch", help="follow changes made by other instances")
    watch.add_argument("--interval", type=float, help="poll interval in seconds")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    from resurev.client import ReviewClient
    from resurev.context import build_context
    from resurev.errors import AIInvocationFailed, BackendUnavailable, NotFound, ParseError
    from resurev.listing import ListingQuery
    from resurev.report import render_listing, render_review

    try:
        ctx = build_context()
    except BackendUnavailable as exc:
        log.error("Store not ready: %s", exc)
        return 2

    with ReviewClient(ctx) as client:
        try:
            if args.command == "analyze":
                if not args.resume.exists():
                    log.error("Resume not found: %s", args.resume)
                    return 1
                description = args.description
                if args.description_file:
                    description = args.description_file.read_text(encoding="utf-8")
                outcome = client.submit(
                    args.resume.name,
                    args.resume.read_bytes(),
                    args.title,
                    company_name=args.company,
                    job_description=description,
                )
                if outcome.is_duplicate:
                    log.info("Already reviewed; showing %s", outcome.duplicate_of)
                print(render_review(client.get(outcome.record_id)))
                return 0 if outcome.status != "error" else 1

            if args.command == "list":
                client.refresh()
                query = ListingQuery(
                    text=args.search,
                    status=args.status,
                    sort=args.sort,
                    page=args.page,
                    page_size=args.page_size or ctx.settings.page_size,
                )
                print(render_listing(client.listing(query)))
                return 0

            if args.command == "show":
                print(render_review(client.get(args.record_id)))
                return 0

            if args.command == "delete":
                outcome = client.delete(args.record_id)
                log.info(
                    "Deleted %s (hard=%s, tombstone=%s, soft=%s)",
                    outcome.record_id, outcome.hard_deleted, outcome.tombstoned, outcome.soft_deleted,
                )
                return 0

            if args.command == "watch":
                interval = args.interval or ctx.settings.sync_interval
                client.bus.subscribe(lambda e: log.info("%s → %s", e.type, e.payload.get("id")))
                client.refresh()
                client.bus.start_polling(interval)
                log.info("Watching for changes every %.1fs (Ctrl-C to stop)", interval)
                try:
                    while True:
                        time.sleep(1)
                except KeyboardInterrupt:
                    log.info("Stopped.")
                return 0
        except NotFound as exc:
            log.error("%s", exc)
            return 1
        except (AIInvocationFailed, BackendUnavailable, ParseError, ValueError) as exc:
            log.error("%s failed: %s", args.command, exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
