#!/usr/bin/env python3
"""
Operator commands for the approval workflow engine.

  init-db   create every table
  seed      bootstrap the template catalog from the YAML configuration
            (templates whose name already exists are skipped)
  stuck     list PENDING requests nobody can act on
  overdue   list PENDING requests past their SLA deadline
  verify    replay every request's action trail and report mismatches

Usage:
  python3 scripts/workflow_admin.py [--config PATH] [--database-url URL] COMMAND

The database URL defaults to ``settings.database_url`` of the loaded
configuration.
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _parse_args(argv):
    p = argparse.ArgumentParser(description="Approval workflow administration")
    p.add_argument(
        "--config",
        default=None,
        help="Configuration YAML (default: APPROVAL_CONFIG or the bundled default set)",
    )
    p.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: settings.database_url from the configuration)",
    )
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create all tables")
    sub.add_parser("seed", help="Bootstrap the template catalog")
    sub.add_parser("stuck", help="List stuck requests")
    overdue = sub.add_parser("overdue", help="List overdue requests")
    overdue.add_argument(
        "--as-of",
        default=None,
        help="ISO timestamp with offset (default: now)",
    )
    sub.add_parser("verify", help="Verify every request's audit trail")
    return p.parse_args(argv)


def _print_requests(requests) -> None:
    if not requests:
        print("  (none)")
        return
    for r in requests:
        deadline = r.sla_deadline.isoformat() if r.sla_deadline else "-"
        print(
            f"  {r.request_number}  level {r.current_level}/{r.total_levels}  "
            f"approver={r.current_approver_id or '-'}  deadline={deadline}"
        )


def _cmd_init_db(session, config) -> int:
    from approval_kernel.db.engine import create_tables

    create_tables()
    print("  Tables created.")
    return 0


def _cmd_seed(session, config) -> int:
    from approval_kernel.services.template_service import TemplateService

    created = TemplateService(session).bootstrap(config.catalog.templates)
    skipped = len(config.catalog.templates) - len(created)
    for t in created:
        print(f"  created {t.name} ({len(t.fields)} fields, {len(t.levels)} levels)")
    print(f"  {len(created)} created, {skipped} skipped.")
    return 0


def _cmd_stuck(session, config) -> int:
    from approval_kernel.selectors.request_selector import RequestSelector

    _print_requests(RequestSelector(session).stuck_requests())
    return 0


def _cmd_overdue(session, config, as_of=None) -> int:
    from approval_kernel.selectors.request_selector import RequestSelector

    if as_of is None:
        as_of = datetime.now(timezone.utc)
    else:
        as_of = datetime.fromisoformat(as_of)
        if as_of.tzinfo is None:
            print("  ERROR: --as-of needs a UTC offset", file=sys.stderr)
            return 2
    _print_requests(RequestSelector(session).overdue_requests(as_of))
    return 0


def _cmd_verify(session, config) -> int:
    from approval_kernel.domain.directory import InMemoryUserDirectory
    from approval_kernel.selectors.request_selector import RequestSelector
    from approval_kernel.services.workflow_service import ApprovalWorkflowService

    workflow = ApprovalWorkflowService(
        session,
        InMemoryUserDirectory(),
        options=config.settings.workflow_options(),
    )
    checked = 0
    failures = 0
    for request_id in list(RequestSelector(session).iter_request_ids()):
        result = workflow.verify_audit_trail(request_id)
        checked += 1
        if not result.consistent:
            failures += 1
            print(f"  MISMATCH {result.request_number}: {', '.join(result.mismatches)}")
    print(f"  {checked} requests checked, {failures} mismatches.")
    return 1 if failures else 0


def main(argv=None) -> int:
    args = _parse_args(argv)

    from approval_config import get_active_config
    from approval_kernel.db.engine import init_engine_from_url, session_scope
    from approval_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError, KeyError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    settings = config.settings
    configure_logging(level=settings.log_level, stream=sys.stderr)
    init_engine_from_url(
        args.database_url or settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )

    with session_scope() as session:
        if args.command == "init-db":
            return _cmd_init_db(session, config)
        if args.command == "seed":
            return _cmd_seed(session, config)
        if args.command == "stuck":
            return _cmd_stuck(session, config)
        if args.command == "overdue":
            return _cmd_overdue(session, config, args.as_of)
        return _cmd_verify(session, config)


if __name__ == "__main__":
    sys.exit(main())
