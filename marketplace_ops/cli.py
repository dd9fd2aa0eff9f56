#!/usr/bin/env python3
"""
Operator tooling for booking, conversation and provider-stat repairs.

Usage:
    marketplace-ops transition <booking_id> <status>
    marketplace-ops reset-booking <booking_id>
    marketplace-ops reconcile-conversations [--id ID ...] [--dry-run] [--workers N]
    marketplace-ops clear-deleted <conversation_id> <user_id>
    marketplace-ops repair-deleted-flags [--id ID ...] [--all-flags] [--dry-run]
    marketplace-ops provider-stats [PROVIDER_ID ...] [--all] [--dry-run] [--workers N]
    marketplace-ops booking-report [--limit N]
    marketplace-ops conversation-report <conversation_id> [--user USER_ID]
    marketplace-ops booking-details <booking_id>
    marketplace-ops conversation-participants [--id ID ...]
    marketplace-ops scan-roles
    marketplace-ops fix-roles [--dry-run]
    marketplace-ops set-role <user_id> <role>

Every command accepts --credentials <service-account.json>.
Exit status is 0 on success and 1 if anything failed.
"""

import argparse
import sys

from marketplace_ops.booking_models import CONVERSATIONS, BookingStatus, UserRole
from marketplace_ops.core.config import settings
from marketplace_ops.core.errors import (
    InvalidTransitionError,
    PartialBatchFailure,
    StoreError,
)
from marketplace_ops.core.logging import logger
from marketplace_ops.core.retry import retry_with_backoff
from marketplace_ops.services.batch import BatchReport, run_batch
from marketplace_ops.services.booking_state import BookingStateMachine
from marketplace_ops.services.conversation_reconciler import ConversationReconciler
from marketplace_ops.services.provider_stats import ProviderStatsAggregator
from marketplace_ops.services.reports import (
    booking_details,
    booking_report,
    conversation_report,
    format_booking,
    format_booking_details,
    format_conversation,
    format_participants,
    participants_report,
)
from marketplace_ops.services.user_roles import (
    apply_role_fix,
    plan_role_fixes,
    scan_missing_roles,
    set_user_role,
)
from marketplace_ops.store import RecordStore, get_record_store

EXIT_OK = 0
EXIT_FAILURE = 1


def _print_report(report: BatchReport, describe) -> None:
    for outcome in report.outcomes:
        if outcome.ok:
            print(f"  {outcome.record_id}: {describe(outcome.result)}")
        else:
            print(f"  {outcome.record_id}: FAILED ({outcome.error})")
    print(
        f"\n{report.name}: {report.total} processed, {report.changed} changed, "
        f"{report.failed} failed"
    )


def _finish(report: BatchReport) -> int:
    report.raise_for_failures()
    return EXIT_OK


def _conversations(store: RecordStore, ids: list[str] | None):
    """Explicit ids are read one by one so a bad id fails only itself."""
    if ids:
        return ids, lambda conversation_id: store.get(CONVERSATIONS, conversation_id)
    return ConversationReconciler(store).all_conversations(), lambda doc: doc


# ============== COMMANDS ==============

def cmd_transition(store: RecordStore, args) -> int:
    machine = BookingStateMachine(store)
    previous = retry_with_backoff(lambda: machine.transition(args.booking_id, args.status))
    print(f"Booking {args.booking_id}: {previous} -> {args.status}")
    return EXIT_OK


def cmd_reset_booking(store: RecordStore, args) -> int:
    machine = BookingStateMachine(store)
    retry_with_backoff(lambda: machine.reset(args.booking_id))
    print(f"Booking {args.booking_id} reset to pending status")
    return EXIT_OK


def cmd_reconcile_conversations(store: RecordStore, args) -> int:
    reconciler = ConversationReconciler(store)
    items, load = _conversations(store, args.id)

    def handle(item):
        return reconciler.reconcile(load(item), dry_run=args.dry_run)

    def describe(result):
        if not result.changed:
            return "OK - no fix needed"
        verb = "would add" if args.dry_run else "added"
        return f"{verb} {result.added} -> {result.after}"

    print(f"Scanning conversations (dry_run={args.dry_run})...\n")
    report = run_batch(
        "reconcile_conversations",
        items,
        handle,
        key=lambda item: item if isinstance(item, str) else item.id,
        max_workers=args.workers,
    )
    _print_report(report, describe)
    return _finish(report)


def cmd_clear_deleted(store: RecordStore, args) -> int:
    reconciler = ConversationReconciler(store)
    result = retry_with_backoff(
        lambda: reconciler.clear_deleted_flag(args.conversation_id, args.user_id)
    )
    if result.written:
        print(f"Fixed conversation {args.conversation_id} - cleared deleted flag for {args.user_id}")
    else:
        print(f"Conversation {args.conversation_id} was not deleted for {args.user_id} - nothing to do")
    return EXIT_OK


def cmd_repair_deleted_flags(store: RecordStore, args) -> int:
    reconciler = ConversationReconciler(store)
    items, load = _conversations(store, args.id)

    def handle(item):
        return reconciler.repair_deleted_flags(load(item), clear_all=args.all_flags, dry_run=args.dry_run)

    def describe(result):
        if not result.cleared:
            return "OK - no stale flags"
        verb = "would clear" if args.dry_run else "cleared"
        return f"{verb} deleted flag for {result.cleared}"

    report = run_batch(
        "repair_deleted_flags",
        items,
        handle,
        key=lambda item: item if isinstance(item, str) else item.id,
        max_workers=args.workers,
    )
    _print_report(report, describe)
    cleared = sum(len(o.result.cleared) for o in report.outcomes if o.ok)
    print(f"Total deleted flags {'to clear' if args.dry_run else 'cleared'}: {cleared}")
    return _finish(report)


def cmd_provider_stats(store: RecordStore, args) -> int:
    aggregator = ProviderStatsAggregator(store)
    if args.all:
        provider_ids = aggregator.provider_ids()
    elif args.provider_ids:
        provider_ids = args.provider_ids
    else:
        print("Pass one or more provider ids, or --all", file=sys.stderr)
        return EXIT_FAILURE

    def describe(stats):
        return (
            f"completedJobs={stats.completed_jobs} reviewCount={stats.review_count} "
            f"rating={stats.display_rating}"
        )

    report = run_batch(
        "provider_stats",
        provider_ids,
        lambda provider_id: aggregator.recompute(provider_id, dry_run=args.dry_run),
        max_workers=args.workers,
    )
    _print_report(report, describe)
    return _finish(report)


def cmd_booking_report(store: RecordStore, args) -> int:
    report = booking_report(store, limit=args.limit)
    print("\n=== Recent Bookings ===\n")
    for booking in report.recent:
        print("\n".join(format_booking(booking)))
        print("---")
    print("\n=== Active Bookings ===\n")
    for booking in report.active:
        print("\n".join(format_booking(booking)))
        print("---")
    print(f"\n{len(report.active)} active bookings")
    return EXIT_OK


def cmd_conversation_report(store: RecordStore, args) -> int:
    report = conversation_report(store, args.conversation_id, args.user)
    print("\n".join(format_conversation(report)))
    return EXIT_OK


def cmd_booking_details(store: RecordStore, args) -> int:
    details = retry_with_backoff(lambda: booking_details(store, args.booking_id))
    print("\n".join(format_booking_details(details)))
    return EXIT_OK


def cmd_conversation_participants(store: RecordStore, args) -> int:
    reports = retry_with_backoff(lambda: participants_report(store, args.id))
    unknown = 0
    for report in reports:
        print("\n".join(format_participants(report)))
        print("")
        unknown += len(report.unknown)
    print(f"{len(reports)} conversation(s), {unknown} unknown participant(s)")
    return EXIT_OK


def cmd_scan_roles(store: RecordStore, args) -> int:
    missing = scan_missing_roles(store)
    print(f"Found {len(missing)} user(s) missing role:")
    for doc in missing:
        email = f" ({doc.get('email')})" if doc.get("email") else ""
        print(f"- {doc.id}{email} status={doc.get('status')}")
    return EXIT_OK


def cmd_set_role(store: RecordStore, args) -> int:
    fix = retry_with_backoff(lambda: set_user_role(store, args.user_id, args.role))
    print(f"Current role: {fix.previous_role}")
    print(f"Updated {fix.user_id} role => {fix.role}")
    return EXIT_OK


def cmd_fix_roles(store: RecordStore, args) -> int:
    fixes = plan_role_fixes(store)
    print(f"Will update {len(fixes)} user(s). dry_run={args.dry_run}")
    for fix in fixes:
        print(f"- {fix.user_id} {fix.email or ''} => {fix.role} (status={fix.status})")
    if args.dry_run:
        return EXIT_OK

    report = run_batch(
        "fix_roles",
        fixes,
        lambda fix: apply_role_fix(store, fix),
        key=lambda fix: fix.user_id,
    )
    _print_report(report, lambda fix: f"role => {fix.role}")
    return _finish(report)


# ============== PARSER ==============

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace-ops",
        description="Repair and inspect marketplace records in Firestore",
    )
    parser.add_argument(
        "--credentials",
        help="Path to a Firebase service account JSON (defaults to GOOGLE_APPLICATION_CREDENTIALS)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    transition = subparsers.add_parser("transition", help="Move a booking to a new status")
    transition.add_argument("booking_id")
    transition.add_argument("status", choices=[s.value for s in BookingStatus])
    transition.set_defaults(handler=cmd_transition)

    reset = subparsers.add_parser("reset-booking", help="Reset a booking back to pending (operator only)")
    reset.add_argument("booking_id")
    reset.set_defaults(handler=cmd_reset_booking)

    reconcile = subparsers.add_parser(
        "reconcile-conversations", help="Add missing participants to conversations"
    )
    reconcile.add_argument("--id", action="append", help="Conversation id (repeatable); default is all")
    reconcile.add_argument("--dry-run", action="store_true", help="Report drift without writing")
    reconcile.add_argument("--workers", type=int, default=settings.BATCH_MAX_WORKERS)
    reconcile.set_defaults(handler=cmd_reconcile_conversations)

    clear = subparsers.add_parser("clear-deleted", help="Clear one user's deleted flag on a conversation")
    clear.add_argument("conversation_id")
    clear.add_argument("user_id")
    clear.set_defaults(handler=cmd_clear_deleted)

    repair = subparsers.add_parser(
        "repair-deleted-flags", help="Clear deleted flags that no longer apply"
    )
    repair.add_argument("--id", action="append", help="Conversation id (repeatable); default is all")
    repair.add_argument("--all-flags", action="store_true", help="Clear every deleted flag, stale or not")
    repair.add_argument("--dry-run", action="store_true")
    repair.add_argument("--workers", type=int, default=settings.BATCH_MAX_WORKERS)
    repair.set_defaults(handler=cmd_repair_deleted_flags)

    stats = subparsers.add_parser("provider-stats", help="Recompute provider reputation fields")
    stats.add_argument("provider_ids", nargs="*")
    stats.add_argument("--all", action="store_true", help="Every user with role PROVIDER")
    stats.add_argument("--dry-run", action="store_true")
    stats.add_argument("--workers", type=int, default=settings.BATCH_MAX_WORKERS)
    stats.set_defaults(handler=cmd_provider_stats)

    bookings = subparsers.add_parser("booking-report", help="Recent and active bookings")
    bookings.add_argument("--limit", type=int, default=10)
    bookings.set_defaults(handler=cmd_booking_report)

    conversation = subparsers.add_parser("conversation-report", help="Show a conversation's visibility fields")
    conversation.add_argument("conversation_id")
    conversation.add_argument("--user", help="Explain visibility for this user")
    conversation.set_defaults(handler=cmd_conversation_report)

    details = subparsers.add_parser("booking-details", help="Show one booking's location and phase fields")
    details.add_argument("booking_id")
    details.set_defaults(handler=cmd_booking_details)

    participants = subparsers.add_parser(
        "conversation-participants", help="Resolve conversation participants to users"
    )
    participants.add_argument("--id", action="append", help="Conversation id (repeatable); default is all")
    participants.set_defaults(handler=cmd_conversation_participants)

    scan = subparsers.add_parser("scan-roles", help="List users missing a role")
    scan.set_defaults(handler=cmd_scan_roles)

    fix = subparsers.add_parser("fix-roles", help="Assign a role to users missing one")
    fix.add_argument("--dry-run", action="store_true")
    fix.set_defaults(handler=cmd_fix_roles)

    set_role = subparsers.add_parser("set-role", help="Set one user's role")
    set_role.add_argument("user_id")
    set_role.add_argument("role", choices=[r.value for r in UserRole])
    set_role.set_defaults(handler=cmd_set_role)

    return parser


def main(argv: list[str] | None = None, store: RecordStore | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "handler", None):
        parser.print_help()
        return EXIT_FAILURE

    if store is None:
        try:
            store = get_record_store(args.credentials)
        except RuntimeError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILURE

    try:
        return args.handler(store, args)
    except PartialBatchFailure as e:
        print(f"\nFAILED: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except (InvalidTransitionError, StoreError) as e:
        logger.error({"event_type": "cli", "event_name": "command_failed", "command": args.command, "error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
