#!/usr/bin/env python3
"""
Command-line front end for the HACCP document approval workflow.

Creates users and documents, records task decisions, shows a document's
approval chain, lists a user's actionable tasks, opens and closes audit
sessions and verifies the audit hash chain.

Configuration comes from haccp_config (YAML file plus environment
overrides); ``--db-url`` overrides the database URL for one invocation.

Usage:
    python3 scripts/workflow_cli.py [--db-url URL] [--config FILE] COMMAND ...

Examples:
    python3 scripts/workflow_cli.py init-db
    python3 scripts/workflow_cli.py add-user --name "Anna" --role technologist
    python3 scripts/workflow_cli.py create-document --author 1 \\
        --title "Cooling log" --stage 2:review --stage 3:approve:comment
    python3 scripts/workflow_cli.py decide --actor 2 --task 1 --decision complete
    python3 scripts/workflow_cli.py show --document 1
    python3 scripts/workflow_cli.py inbox --user 3
    python3 scripts/workflow_cli.py audit-start --auditor 4 --type external
    python3 scripts/workflow_cli.py verify-audit
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 72


def banner(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}")
    print("=" * W)


def field(label: str, value, indent: int = 2) -> None:
    print(f"{' ' * indent}{label + ':':<16} {value}")


def parse_stage(raw: str):
    """Parse ``ASSIGNEE[:ACTION[:FLAGS]]``; FLAGS is a comma list of skip, comment."""
    from haccp_kernel.domain.workflow import StageSpec

    parts = raw.split(":")
    if len(parts) > 3 or not parts[0].strip():
        raise argparse.ArgumentTypeError(f"bad stage {raw!r}")
    try:
        assignee_id = int(parts[0])
    except ValueError:
        raise argparse.ArgumentTypeError(f"bad assignee in stage {raw!r}") from None

    action = parts[1] if len(parts) > 1 and parts[1] else "approve"
    flags = {f.strip() for f in parts[2].split(",")} if len(parts) > 2 else set()
    unknown = flags - {"skip", "comment", ""}
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown stage flag(s) {', '.join(sorted(unknown))} in {raw!r}"
        )

    return StageSpec(
        assignee_id=assignee_id,
        action=action,
        can_skip="skip" in flags,
        comment_required="comment" in flags,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HACCP document approval workflow",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:")[1],
    )
    parser.add_argument("--db-url", default=None, help="Override the configured database URL")
    parser.add_argument("--config", default=None, help="Path to a haccp.yaml file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    p = sub.add_parser("add-user", help="Create a user")
    p.add_argument("--name", required=True)
    p.add_argument("--role", default="employee")
    p.add_argument("--telegram-chat-id", type=int, default=None)

    p = sub.add_parser("create-document", help="Create a document and its approval chain")
    p.add_argument("--author", type=int, required=True)
    p.add_argument("--title", required=True)
    p.add_argument("--body", default="")
    p.add_argument("--recipient", type=int, default=None)
    p.add_argument(
        "--stage", dest="stages", type=parse_stage, action="append", default=[],
        help="ASSIGNEE[:ACTION[:skip,comment]] (repeat, in step order)",
    )

    p = sub.add_parser("decide", help="Record a decision on a task")
    p.add_argument("--actor", type=int, required=True)
    p.add_argument("--task", type=int, required=True)
    p.add_argument("--decision", required=True, choices=["complete", "reject", "skip"])
    p.add_argument("--comment", default=None)

    p = sub.add_parser("show", help="Show a document and its approval chain")
    p.add_argument("--document", type=int, required=True)
    p.add_argument("--json", action="store_true", help="Print JSON instead of text")

    p = sub.add_parser("inbox", help="List tasks a user can act on now")
    p.add_argument("--user", type=int, required=True)

    p = sub.add_parser("audit-start", help="Open an audit session (blocks writes)")
    p.add_argument("--auditor", type=int, required=True)
    p.add_argument("--type", dest="audit_type", required=True)
    p.add_argument("--name", default=None)

    p = sub.add_parser("audit-end", help="Close an audit session")
    p.add_argument("--session", type=int, required=True)
    p.add_argument("--actor", type=int, required=True)

    sub.add_parser("verify-audit", help="Validate the audit hash chain")
    return parser


def _document_as_dict(document) -> dict:
    return {
        "document_id": document.document_id,
        "title": document.title,
        "status": document.status.value,
        "current_step": document.current_step,
        "author_id": document.author_id,
        "recipient_id": document.recipient_id,
        "tasks": [
            {
                "task_id": t.task_id,
                "step": t.step,
                "assignee_id": t.assignee_id,
                "action": t.action.value,
                "status": t.status.value,
                "can_skip": t.can_skip,
                "comment_required": t.comment_required,
                "comment": t.comment,
                "completed_at": t.completed_at.isoformat() if t.completed_at else None,
            }
            for t in document.tasks
        ],
    }


def run(args, config) -> int:
    from concurrent.futures import ThreadPoolExecutor

    from haccp_kernel.db import create_tables, get_session_factory, session_scope
    from haccp_kernel.services import (
        AuditModeService,
        AuditorService,
        DocumentService,
        SequenceService,
        UserService,
    )
    from haccp_services import DecisionOrchestrator, build_dispatcher

    if args.command == "init-db":
        create_tables()
        with session_scope() as session:
            SequenceService(session).initialize_sequences()
        print("Tables created.")
        return 0

    factory = get_session_factory()

    if args.command == "add-user":
        with session_scope(factory) as session:
            user = UserService(session).create_user(
                args.name, role=args.role, telegram_chat_id=args.telegram_chat_id,
            )
        print(f"User {user.user_id} created: {user.name}")
        return 0

    if args.command == "show":
        with session_scope(factory) as session:
            document = DocumentService(session).get_document(args.document)
        if args.json:
            print(json.dumps(_document_as_dict(document), indent=2))
            return 0
        banner(f"DOCUMENT #{document.document_id}: {document.title}")
        field("Status", document.status.value)
        field("Current step", document.current_step)
        field("Author", document.author_id)
        print()
        for t in document.tasks:
            marker = ">" if t.step == document.current_step and t.is_pending else " "
            print(
                f"  {marker} step {t.step:<3} task {t.task_id:<5} user {t.assignee_id:<5} "
                f"{t.action.value:<8} {t.status.value:<9} {t.comment or ''}"
            )
        return 0

    if args.command == "inbox":
        with session_scope(factory) as session:
            tasks = DocumentService(session).list_actionable_tasks(args.user)
        if not tasks:
            print(f"No actionable tasks for user {args.user}.")
            return 0
        for t in tasks:
            print(f"  task {t.task_id:<5} document {t.document_id:<5} step {t.step:<3} {t.action.value}")
        return 0

    if args.command == "audit-start":
        with session_scope(factory) as session:
            info = AuditModeService(session).start_session(
                args.auditor, args.audit_type, auditor_name=args.name,
            )
        print(f"Audit session {info.session_id} started ({info.audit_type}).")
        return 0

    if args.command == "audit-end":
        with session_scope(factory) as session:
            AuditModeService(session).end_session(args.session, args.actor)
        print(f"Audit session {args.session} ended.")
        return 0

    if args.command == "verify-audit":
        with session_scope(factory) as session:
            auditor = AuditorService(session)
            auditor.validate_chain()
            count = auditor.count_events()
        print(f"Audit chain OK ({count} events).")
        return 0

    # Writes through the orchestrator
    notifications = config.notifications
    executor = (
        ThreadPoolExecutor(max_workers=notifications.max_workers)
        if notifications.detached else None
    )
    dispatcher = build_dispatcher(notifications)
    orchestrator = DecisionOrchestrator(factory, dispatcher, executor=executor)
    try:
        if args.command == "create-document":
            created = orchestrator.create_document(
                args.author, args.title, args.body, args.stages,
                recipient_id=args.recipient,
            )
            document = created.document
            print(
                f"Document {document.document_id} created with "
                f"{len(document.tasks)} step(s)."
            )
        elif args.command == "decide":
            result = orchestrator.decide(args.actor, args.task, args.decision, args.comment)
            print(
                f"Task {result.task_id}: {result.task_status.value}; document "
                f"{result.document_id} is {result.document_status.value} "
                f"at step {result.current_step}."
            )
        orchestrator.wait_for_notifications()
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
        dispatcher.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    from haccp_config import get_active_config
    from haccp_kernel.db import init_engine_from_url
    from haccp_kernel.exceptions import HaccpKernelError
    from haccp_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except (OSError, HaccpKernelError) as exc:
        print(f"ERROR: cannot load configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level)
    database = config.database
    init_engine_from_url(
        args.db_url or database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        pool_timeout=database.pool_timeout,
    )

    try:
        return run(args, config)
    except HaccpKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
