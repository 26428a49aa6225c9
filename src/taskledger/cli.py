#!/usr/bin/env python3
"""
TASKLEDGER - CLI Interface
==========================
Command-line tool for the persistent task store.

Usage:
    taskledger add "Schema" "Design the database schema"
    taskledger list
    taskledger start <id>
    taskledger complete <id> --summary "done"
    taskledger plan tasks.json --mode selective
    taskledger archive -d "sprint 1"
    taskledger search "database api"
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import StoreConfig
from .manager import TaskManager
from .schema import TaskStatus, UpdateMode


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value} (expected YYYY-MM-DD)")


def _parse_json_object(value: str) -> dict:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e.msg}")
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dir", help="Data directory (default: $TASKLEDGER_DATA_DIR or .claude/tasks)")
    common.add_argument("--no-history", action="store_true", help="Don't record git history")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        prog="taskledger",
        description="Taskledger - persistent task graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  taskledger add "Schema" "Design schema"      Create a task
  taskledger add "API" "Build API" --dep ID     Create a task depending on ID
  taskledger list --status pending              List pending tasks
  taskledger check ID                           Can ID be executed?
  taskledger plan plan.json --mode append       Apply a batch of tasks
  taskledger archive -d "before refactor"       Archive the current tasks
  taskledger restore archive_....json --merge   Merge an archive back
  taskledger deleted                            List deleted task backups
  taskledger search "api auth" --page 2         Search live and past tasks
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    add_parser = subparsers.add_parser("add", parents=[common], help="Create a task")
    add_parser.add_argument("name")
    add_parser.add_argument("description")
    add_parser.add_argument("--notes")
    add_parser.add_argument("--dep", action="append", default=[], help="Dependency task ID (repeatable)")
    add_parser.add_argument("--agent")

    list_parser = subparsers.add_parser("list", parents=[common], help="List tasks")
    list_parser.add_argument("--status", choices=[s.value for s in TaskStatus])
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    show_parser = subparsers.add_parser("show", parents=[common], help="Show one task as JSON")
    show_parser.add_argument("task_id")

    subparsers.add_parser("status", parents=[common], help="Show a status report")

    start_parser = subparsers.add_parser("start", parents=[common], help="Mark a task in progress")
    start_parser.add_argument("task_id")

    complete_parser = subparsers.add_parser("complete", parents=[common], help="Mark a task completed")
    complete_parser.add_argument("task_id")
    complete_parser.add_argument("--summary")
    complete_parser.add_argument("--details", type=_parse_json_object, help="JSON completion details")

    update_parser = subparsers.add_parser("update", parents=[common], help="Edit an unfinished task")
    update_parser.add_argument("task_id")
    update_parser.add_argument("--name")
    update_parser.add_argument("--description")
    update_parser.add_argument("--notes")
    update_parser.add_argument("--guide", help="Implementation guide")
    update_parser.add_argument("--criteria", help="Verification criteria")
    update_parser.add_argument("--agent")
    update_parser.add_argument("--dep", action="append", help="Replace dependencies (repeatable)")

    delete_parser = subparsers.add_parser("delete", parents=[common], help="Delete a task")
    delete_parser.add_argument("task_id")

    check_parser = subparsers.add_parser("check", parents=[common], help="Check if a task can run")
    check_parser.add_argument("task_id")

    plan_parser = subparsers.add_parser("plan", parents=[common], help="Apply a batch of tasks from JSON")
    plan_parser.add_argument("file", help="JSON file with a list of tasks")
    plan_parser.add_argument("--mode", required=True, choices=[m.value for m in UpdateMode])
    plan_parser.add_argument("--analysis", help="Global analysis note attached to every task")

    clear_parser = subparsers.add_parser("clear", parents=[common], help="Remove every task")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm: unfinished tasks are lost")

    archive_parser = subparsers.add_parser("archive", parents=[common], help="Archive current tasks")
    archive_parser.add_argument("-d", "--description")

    archives_parser = subparsers.add_parser("archives", parents=[common], help="List archives")
    archives_parser.add_argument("--json", action="store_true", help="Output as JSON")

    restore_parser = subparsers.add_parser("restore", parents=[common], help="Restore from an archive")
    restore_parser.add_argument("archive")
    restore_parser.add_argument("--merge", action="store_true", help="Merge instead of replace")
    restore_parser.add_argument("--preserve-ids", action="store_true")

    deleted_parser = subparsers.add_parser("deleted", parents=[common], help="List deleted tasks")
    deleted_parser.add_argument("--limit", type=int)
    deleted_parser.add_argument("--since", type=_parse_date)
    deleted_parser.add_argument("--json", action="store_true", help="Output as JSON")

    recover_parser = subparsers.add_parser("recover", parents=[common], help="Recover a deleted task")
    recover_parser.add_argument("task_id")

    history_parser = subparsers.add_parser("history", parents=[common], help="Show task history")
    history_parser.add_argument("--task", dest="task_id")
    history_parser.add_argument("--operation")
    history_parser.add_argument("--limit", type=int)
    history_parser.add_argument("--since", type=_parse_date)

    search_parser = subparsers.add_parser("search", parents=[common], help="Search tasks")
    search_parser.add_argument("query")
    search_parser.add_argument("--id", dest="is_id", action="store_true", help="Exact id search")
    search_parser.add_argument("--page", type=int, default=1)
    search_parser.add_argument("--page-size", type=int, default=5)
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    complexity_parser = subparsers.add_parser("complexity", parents=[common], help="Assess complexity")
    complexity_parser.add_argument("task_id")

    request_parser = subparsers.add_parser("request", parents=[common], help="Show or set the initial request")
    request_parser.add_argument("text", nargs="?")

    subparsers.add_parser("sync", parents=[common], help="Show store statistics")

    return parser


def make_manager(args: argparse.Namespace) -> TaskManager:
    config = StoreConfig.from_env()
    if args.dir:
        config = config.model_copy(update={"data_dir": Path(args.dir)})
    if args.no_history:
        config = config.model_copy(update={"history_enabled": False})
    return TaskManager(config)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    manager = make_manager(args)

    if args.command == "add":
        task = manager.create_task(
            args.name, args.description, notes=args.notes, dependencies=args.dep, agent=args.agent
        )
        print(f"✅ Created: {task.id}")
        print(f"   Name: {task.name}")
        print(f"   Dependencies: {len(task.dependencies)}")

    elif args.command == "list":
        tasks = manager.list_tasks(TaskStatus(args.status) if args.status else None)
        if args.json:
            _print_json([t.to_json_dict() for t in tasks])
        elif not tasks:
            print("No tasks found")
        else:
            print("📋 Tasks:")
            print("-" * 60)
            for task in tasks:
                print(f"  [{task.id}] {task.name}")
                print(f"      Status: {task.status.value} | Updated: {task.updated_at.isoformat()}")
            print("-" * 60)

    elif args.command == "show":
        task = manager.get_task(args.task_id)
        if not task:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        _print_json(task.to_json_dict())

    elif args.command == "status":
        print(manager.get_status_report())

    elif args.command == "start":
        check = manager.can_execute_task(args.task_id)
        if check.blocked_by:
            print(f"⛔ Task {args.task_id} is blocked by: {check.blocked_by}")
            return 1
        task = manager.start_task(args.task_id)
        if not task:
            print(f"❌ Cannot start task: {args.task_id}")
            return 1
        print(f"▶️ Started: {task.name}")

    elif args.command == "complete":
        task = manager.complete_task(args.task_id, summary=args.summary, completion_details=args.details)
        if not task:
            print(f"❌ Cannot complete task: {args.task_id}")
            return 1
        print(f"✅ Completed: {task.name}")

    elif args.command == "update":
        result = manager.update_task_content(
            args.task_id,
            name=args.name,
            description=args.description,
            notes=args.notes,
            dependencies=args.dep,
            implementation_guide=args.guide,
            verification_criteria=args.criteria,
            agent=args.agent,
        )
        print(f"{'✅' if result.success else '❌'} {result.message}")
        return 0 if result.success else 1

    elif args.command == "delete":
        result = manager.delete_task(args.task_id)
        print(f"{'🗑️' if result.success else '❌'} {result.message}")
        return 0 if result.success else 1

    elif args.command == "check":
        check = manager.can_execute_task(args.task_id)
        if check.can_execute:
            print(f"▶️ Task {args.task_id} can be executed")
        elif check.blocked_by:
            print(f"⛔ Blocked by: {', '.join(check.blocked_by)}")
        else:
            print(f"⛔ Task {args.task_id} cannot be executed")
        return 0 if check.can_execute else 1

    elif args.command == "plan":
        with open(args.file, "r", encoding="utf-8") as f:
            specs = json.load(f)
        result = manager.batch_create_or_update(specs, args.mode, args.analysis)
        print(f"📋 Planned {len(result.tasks)} task(s) in {args.mode} mode")
        for task in result.tasks:
            print(f"   - [{task.id}] {task.name}")
        for item in result.unresolved:
            print(f"⚠️ Unresolved dependency '{item.reference}' of '{item.task_name}' was dropped")
        if result.cycle:
            print(f"⚠️ Dependency cycle: {' -> '.join(result.cycle)}")

    elif args.command == "clear":
        if not args.yes:
            print("⚠️ This removes every task; unfinished tasks are NOT backed up. Re-run with --yes.")
            return 1
        result = manager.clear_all_tasks()
        print(f"🧹 {result.message}")
        if result.backup_file:
            print(f"   Backup: {result.backup_file}")

    elif args.command == "archive":
        result = manager.create_archive(args.description)
        print(f"🗄️ {result.message}")

    elif args.command == "archives":
        archives = manager.list_archives()
        if args.json:
            _print_json([a.to_json_dict() for a in archives])
        elif not archives:
            print("No archives found")
        else:
            for archive in archives:
                print(f"  {archive.filename}  {archive.tasks_count} task(s)  {archive.description or ''}")

    elif args.command == "restore":
        result = manager.restore_from_archive(args.archive, merge=args.merge, preserve_ids=args.preserve_ids)
        print(f"{'♻️' if result.success else '❌'} {result.message}")
        return 0 if result.success else 1

    elif args.command == "deleted":
        deleted = manager.get_deleted_tasks(limit=args.limit, since=args.since)
        if args.json:
            _print_json([d.to_json_dict() for d in deleted])
        elif not deleted:
            print("No deleted tasks found")
        else:
            for info in deleted:
                print(f"  [{info.task.id}] {info.task.name}  deleted {info.deleted_at.isoformat()}")

    elif args.command == "recover":
        result = manager.recover_task(args.task_id)
        print(f"{'🩹' if result.success else '❌'} {result.message}")
        return 0 if result.success else 1

    elif args.command == "history":
        entries = manager.get_task_history(
            task_id=args.task_id, operation=args.operation, limit=args.limit, since=args.since
        )
        if not entries:
            print("No history found")
        for entry in entries:
            print(f"  {entry.commit[:8]}  {entry.timestamp}  {entry.message}")

    elif args.command == "search":
        result = manager.search_tasks(args.query, is_id=args.is_id, page=args.page, page_size=args.page_size)
        if args.json:
            _print_json(result.to_json_dict())
        else:
            p = result.pagination
            print(f"🔎 {p.total_results} result(s), page {p.current_page}/{p.total_pages}")
            for task in result.tasks:
                print(f"  [{task.id}] {task.name} ({task.status.value})")

    elif args.command == "complexity":
        assessment = manager.assess_task_complexity(args.task_id)
        if not assessment:
            print(f"❌ Task not found: {args.task_id}")
            return 1
        print(f"Complexity: {assessment.level.value}")
        for rec in assessment.recommendations:
            print(f"  - {rec}")

    elif args.command == "request":
        if args.text:
            manager.set_initial_request(args.text)
            print("✅ Initial request saved")
        else:
            print(manager.get_initial_request() or "No initial request")

    elif args.command == "sync":
        result = manager.sync_task_state()
        _print_json(result.to_json_dict())

    return 0


if __name__ == "__main__":
    sys.exit(main())
