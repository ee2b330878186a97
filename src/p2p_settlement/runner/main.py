"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..confidence import parse_extended, validate_receipt
from ..extractors import ParseError, PdfTextExtractor, ReceiptParser, TextExtractionError
from ..mailbox_client import MailboxClient
from ..matching import MatchingEngine
from ..payout_client import PayoutClient
from ..schemas.receipt import transfer_type_of
from ..services import MailboxScanner, SettlementOrchestrator, TransactionStatusMonitor
from ..state_store import StateStore
from ..storage import PdfStore
from ..trading_client import TradingClient
from .scheduler import PeriodicTask

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="p2p-settlement",
        description="Match bank receipts to P2P payouts and settle the trades",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    subparsers.add_parser("scan", help="Scan mailboxes for bank receipts once")

    match_parser = subparsers.add_parser("match", help="Match unmatched receipts to payouts")
    match_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum receipts to try (default: all)",
    )

    subparsers.add_parser("release", help="Run one asset release pass")
    subparsers.add_parser("retry-approvals", help="Retry payout approvals that failed")
    subparsers.add_parser("monitor", help="Poll payout platform transaction statuses once")

    reparse_parser = subparsers.add_parser("reparse", help="Re-parse FAILED receipts")
    reparse_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum receipts to re-parse (default: all)",
    )

    parse_parser = subparsers.add_parser("parse", help="Parse a local receipt PDF or text file")
    parse_parser.add_argument("file", type=Path, help="Receipt PDF or extracted text")
    parse_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )

    subparsers.add_parser("run", help="Run all loops until interrupted")
    subparsers.add_parser("status", help="Show pipeline status and statistics")

    return parser


@dataclass
class Pipeline:
    """Wired pipeline components."""

    store: StateStore
    pdf_store: PdfStore
    matcher: MatchingEngine
    orchestrator: SettlementOrchestrator
    scanner: MailboxScanner
    monitor: TransactionStatusMonitor


def build_pipeline(config: Config) -> Pipeline:
    """Construct clients, store and services from configuration."""
    store = StateStore(config.state_db_path)
    pdf_store = PdfStore(config.pdf_storage_path)
    timeout = config.settlement.call_timeout_seconds

    payout_client = PayoutClient(
        base_url=config.payout_platform.base_url,
        token=config.payout_platform.token,
        timeout=timeout,
    )
    trading_client = TradingClient(
        base_url=config.trading_platform.base_url,
        api_key=config.trading_platform.api_key,
        api_secret=config.trading_platform.api_secret,
        recv_window=config.trading_platform.recv_window,
        timeout=timeout,
    )
    mailboxes = {
        account.email: MailboxClient(config.mailbox.base_url, account.access_token)
        for account in config.mailbox.accounts
    }

    matcher = MatchingEngine(store, store, store, config.matching)
    orchestrator = SettlementOrchestrator(
        receipts=store,
        payouts=store,
        transactions=store,
        pdf_store=pdf_store,
        payout_client=payout_client,
        trading_client=trading_client,
        config=config.settlement,
    )
    scanner = MailboxScanner(
        mailboxes=mailboxes,
        parser=ReceiptParser(),
        text_extractor=PdfTextExtractor(),
        pdf_store=pdf_store,
        receipts=store,
        matcher=matcher,
        config=config.mailbox,
        on_match=orchestrator.on_match,
    )
    monitor = TransactionStatusMonitor(
        payout_client=payout_client,
        remote_transactions=store,
        payouts=store,
        config=config.monitor,
        accounts=config.payout_platform.accounts,
    )

    return Pipeline(
        store=store,
        pdf_store=pdf_store,
        matcher=matcher,
        orchestrator=orchestrator,
        scanner=scanner,
        monitor=monitor,
    )


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write a default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_scan(config: Config) -> int:
    """Scan mailboxes once."""
    if not config.mailbox.accounts:
        print("❌ No mailbox accounts configured")
        return 1

    print(f"🔍 Scanning {len(config.mailbox.accounts)} mailbox(es)...")
    pipeline = build_pipeline(config)
    summary = pipeline.scanner.scan()

    print(f"  📧 Emails found:       {summary.total_emails}")
    print(f"  📄 Processed:          {summary.processed}")
    print(f"  🆕 New receipts:       {summary.new_receipts}")
    print(f"  🔗 Matched:            {summary.matched}")
    print(f"  ✅ Approved:           {summary.approved}")
    print(f"  ⚠️  Failed parses:      {summary.failed_parses}")
    for error in summary.errors:
        print(f"  ❌ {error}")

    return 1 if summary.errors else 0


def cmd_match(config: Config, limit: int | None) -> int:
    """Match unmatched successful receipts."""
    print("🔗 Matching unmatched receipts...")
    pipeline = build_pipeline(config)
    results = pipeline.matcher.match_unmatched(limit=limit)

    approved = 0
    for result in results:
        print(f"  ✓ Receipt {result.receipt_id} -> payout {result.payout_id}")
        if pipeline.orchestrator.on_match(result):
            approved += 1

    print(f"\n✓ {len(results)} match(es), {approved} approved")
    return 0


def cmd_release(config: Config) -> int:
    """Run one release pass."""
    pipeline = build_pipeline(config)
    summary = pipeline.orchestrator.process_releases()

    print("💸 Release pass")
    print(f"  Checked:     {summary.checked}")
    print(f"  Waiting:     {summary.waiting}")
    print(f"  Completed:   {summary.completed}")
    print(f"  Failed:      {summary.failed}")
    return 1 if summary.failed else 0


def cmd_retry_approvals(config: Config) -> int:
    """Retry pending approvals."""
    pipeline = build_pipeline(config)
    approved = pipeline.orchestrator.retry_pending_approvals()
    print(f"✓ {approved} transaction(s) approved")
    return 0


def cmd_monitor(config: Config) -> int:
    """Poll transaction statuses once."""
    pipeline = build_pipeline(config)
    failed = False
    for summary in pipeline.monitor.check_all():
        print(
            f"  📊 {summary.account}: {summary.fetched} fetched, "
            f"{summary.new} new, {summary.updated} updated, {summary.unchanged} unchanged"
        )
        for error in summary.errors:
            failed = True
            print(f"  ❌ {error}")
    return 1 if failed else 0


def cmd_reparse(config: Config, limit: int | None) -> int:
    """Re-parse FAILED receipts."""
    print("🔁 Re-parsing failed receipts...")
    pipeline = build_pipeline(config)
    summary = pipeline.scanner.reparse_failed(limit=limit)

    print(f"  Checked:       {summary.checked}")
    print(f"  Re-parsed:     {summary.reparsed}")
    print(f"  Still failed:  {summary.still_failed}")
    print(f"  Matched:       {summary.matched}")
    for error in summary.errors:
        print(f"  ❌ {error}")
    return 0


def cmd_parse(file_path: Path, as_json: bool) -> int:
    """Parse a local receipt file."""
    if not file_path.exists():
        print(f"❌ File not found: {file_path}")
        return 1

    try:
        if file_path.suffix.lower() == ".pdf":
            text = PdfTextExtractor().extract(file_path.read_bytes())
        else:
            text = file_path.read_text(encoding="utf-8")
        result = parse_extended(text)
    except TextExtractionError as e:
        print(f"❌ Could not read PDF: {e}")
        return 1
    except ParseError as e:
        if as_json:
            print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
        else:
            print(f"❌ {e.code}: {e.message}")
        return 1

    receipt = result.receipt
    if as_json:
        data = {
            "receipt": asdict(receipt),
            "transfer_type": transfer_type_of(receipt).value,
            **result.to_dict(),
            "validation_errors": validate_receipt(receipt),
        }
        print(json.dumps(data, ensure_ascii=False, indent=2, default=str))
        return 0

    print(f"✓ {transfer_type_of(receipt).value}")
    for key, value in asdict(receipt).items():
        if value is not None:
            print(f"  {key}: {value}")
    print(f"  confidence: {result.confidence:.2f}")
    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    for error in validate_receipt(receipt):
        print(f"  ❌ {error}")
    return 0


def cmd_run(config: Config) -> int:
    """Run all loops until interrupted."""
    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    pipeline = build_pipeline(config)
    tasks = [
        PeriodicTask(
            "release-loop",
            config.settlement.release_interval_seconds,
            pipeline.orchestrator.process_releases,
        ),
        PeriodicTask(
            "approval-retry",
            config.settlement.approval_retry_interval_seconds,
            pipeline.orchestrator.retry_pending_approvals,
        ),
    ]
    if config.mailbox.accounts:
        tasks.append(
            PeriodicTask(
                "mailbox-scan", config.mailbox.scan_interval_seconds, pipeline.scanner.scan
            )
        )
    else:
        print("⚠️  No mailbox accounts configured, scanner disabled")
    if config.monitor.enabled:
        tasks.append(
            PeriodicTask(
                "status-monitor", config.monitor.interval_seconds, pipeline.monitor.check_all
            )
        )

    print(f"🚀 Starting {len(tasks)} loop(s), Ctrl+C to stop")
    for task in tasks:
        task.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n⏹  Stopping...")
    finally:
        for task in tasks:
            task.stop()

    return 0


def cmd_status(config: Config) -> int:
    """Show pipeline status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Receipts total:         {stats['receipts_total']}")
    print(f"  Receipts parsed:        {stats['receipts_success']}")
    print(f"  Receipts failed:        {stats['receipts_failed']}")
    print(f"  Receipts matched:       {stats['receipts_matched']}")
    print(f"  Payouts:                {stats['payouts_total']}")
    print(f"  Remote transactions:    {stats['remote_transactions']}")
    print("  Transactions:")
    for status, count in sorted(stats["transactions_by_status"].items()):
        print(f"    {status:<20} {count}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Commands that need no config
    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)
    if parsed.command == "parse":
        return cmd_parse(parsed.file, parsed.json)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "scan":
        return cmd_scan(config)
    elif parsed.command == "match":
        return cmd_match(config, parsed.limit)
    elif parsed.command == "release":
        return cmd_release(config)
    elif parsed.command == "retry-approvals":
        return cmd_retry_approvals(config)
    elif parsed.command == "monitor":
        return cmd_monitor(config)
    elif parsed.command == "reparse":
        return cmd_reparse(config, parsed.limit)
    elif parsed.command == "run":
        return cmd_run(config)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
