"""Command-line interface for cognategov."""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .errors import GovernanceError, IntegrityError, QueryError, ValidationError
from .ledger.ledger import Ledger
from .ledger.models import LedgerEntry
from .ledger.query import LedgerFilter, LedgerSort, PageRequest
from .ledger.signing import load_public_key, write_keypair
from .ledger.storage import JSONLLedgerStorage
from .policies.evaluator import PolicyEvaluator
from .policies.models import ProposedAction
from .policies.store import PolicyStore
from .rules.compiler import compile_rule_set, lint, validate
from .rules.models import RuleSet

CSV_FIELDS = (
    "sequence",
    "when",
    "event",
    "category",
    "severity",
    "actor_type",
    "actor_id",
    "actor_name",
    "space_id",
    "project_id",
    "status",
    "description",
    "flagged",
    "review_status",
    "content_hash",
)

_SEVERITY_STYLES = {
    "critical": "bold red",
    "error": "red",
    "warning": "yellow",
    "notice": "cyan",
    "info": "blue",
    "debug": "dim",
}


def _format_optional_dependency_error(exc: Exception) -> str:
    message = str(exc)
    if isinstance(exc, RuntimeError) and "cryptography" in message and "cognategov[crypto]" not in message:
        return f'{message} (install "cognategov[crypto]")'
    return message


def _parse_timestamp(value: str) -> datetime | None:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _flatten_entry(entry: LedgerEntry) -> dict[str, str]:
    def text(value: object) -> str:
        return "" if value is None else str(value)

    return {
        "sequence": str(entry.sequence),
        "when": entry.when.isoformat(),
        "event": entry.what.type.value,
        "category": entry.what.category.value,
        "severity": entry.what.severity.value,
        "actor_type": entry.who.type.value,
        "actor_id": entry.who.id,
        "actor_name": text(entry.who.name),
        "space_id": text(entry.where.space_id),
        "project_id": text(entry.where.project_id),
        "status": text(entry.what.status),
        "description": entry.what.description,
        "flagged": "true" if entry.is_flagged else "false",
        "review_status": entry.review_status.value,
        "content_hash": entry.crypto.content_hash,
    }


def _write_entries(entries: Iterable[LedgerEntry], output_format: str, output_path: Path | None) -> int:
    if output_format == "table":
        console = Console(file=output_path.open("w", encoding="utf-8") if output_path else None)
        try:
            console.print(_entries_table(entries))
        finally:
            if output_path is not None:
                console.file.close()
        return 0

    output = sys.stdout
    close_output = False
    if output_path is not None:
        output = output_path.open("w", encoding="utf-8", newline="")
        close_output = True
    try:
        if output_format == "json":
            documents = [entry.model_dump(mode="json", by_alias=True) for entry in entries]
            output.write(json.dumps(documents, ensure_ascii=False) + "\n")
        elif output_format == "ndjson":
            for entry in entries:
                output.write(entry.model_dump_json(by_alias=True) + "\n")
        elif output_format == "csv":
            writer = csv.DictWriter(output, fieldnames=CSV_FIELDS, lineterminator="\n")
            writer.writeheader()
            for entry in entries:
                writer.writerow(_flatten_entry(entry))
        else:
            raise ValueError(f"unknown format: {output_format}")
    finally:
        if close_output:
            output.close()
    return 0


def _entries_table(entries: Iterable[LedgerEntry]) -> Table:
    table = Table(title="Ledger entries")
    table.add_column("#", justify="right")
    table.add_column("When")
    table.add_column("Event")
    table.add_column("Severity")
    table.add_column("Actor")
    table.add_column("Description")
    table.add_column("Flag")
    for entry in entries:
        severity = entry.what.severity.value
        style = _SEVERITY_STYLES.get(severity, "white")
        actor = f"{entry.who.type.value}:{entry.who.name or entry.who.id}"
        table.add_row(
            str(entry.sequence),
            entry.when.strftime("%Y-%m-%d %H:%M:%S"),
            entry.what.type.value,
            f"[{style}]{severity}[/{style}]",
            escape(actor),
            escape(entry.what.description),
            "*" if entry.is_flagged else "",
        )
    return table


def _open_ledger(path: Path) -> Ledger:
    return Ledger(JSONLLedgerStorage(path), verify_on_open=False)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cognategov", add_help=True)
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    verify_parser = subparsers.add_parser("verify", help="Verify a JSONL ledger file")
    verify_parser.add_argument("ledger_path", type=Path, help="Path to ledger JSONL file")
    verify_parser.add_argument("--json", action="store_true", help="Output JSON")
    verify_parser.add_argument("--public-key", type=Path, help="Path to Ed25519 public key PEM")

    query_parser = subparsers.add_parser("query", help="Filter, sort and page ledger entries")
    query_parser.add_argument("ledger_path", type=Path, help="Path to ledger JSONL file")
    query_parser.add_argument("--actor-type", action="append", default=[], help="Actor type (repeatable)")
    query_parser.add_argument("--category", action="append", default=[], help="Category (repeatable)")
    query_parser.add_argument("--severity", action="append", default=[], help="Severity (repeatable)")
    query_parser.add_argument("--event", action="append", default=[], help="Event type (repeatable)")
    query_parser.add_argument("--space", action="append", default=[], help="Space id (repeatable)")
    query_parser.add_argument("--project", action="append", default=[], help="Project id (repeatable)")
    query_parser.add_argument("--flagged", action="store_true", help="Only flagged entries")
    query_parser.add_argument("--search", help="Search description, actor name and tags")
    query_parser.add_argument("--start", help="Entries at or after timestamp (UTC)")
    query_parser.add_argument("--end", help="Entries at or before timestamp (UTC)")
    query_parser.add_argument(
        "--sort", choices=("when", "sequence", "severity", "category"), default="sequence"
    )
    query_parser.add_argument("--desc", action="store_true", help="Sort descending")
    query_parser.add_argument("--page", type=int, default=1)
    query_parser.add_argument("--page-size", type=int, default=25)
    query_parser.add_argument(
        "--format",
        choices=("json", "ndjson", "csv", "table"),
        default="table",
        help="Output format",
    )
    query_parser.add_argument("--output", type=Path, help="Output file path")

    compile_parser = subparsers.add_parser("compile", help="Validate and compile a rule-set")
    compile_parser.add_argument("rule_set_path", type=Path, help="Path to rule-set JSON")
    compile_parser.add_argument(
        "--check", action="store_true", help="Exit 1 without compiling when validation fails"
    )
    compile_parser.add_argument("--output", type=Path, help="Output file path")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate an action against policies")
    evaluate_parser.add_argument("policies_path", type=Path, help="Path to policies JSON")
    evaluate_parser.add_argument("action_path", type=Path, help="Path to proposed action JSON")

    keygen_parser = subparsers.add_parser("keygen", help="Generate Ed25519 key pair")
    keygen_parser.add_argument("--private-key", type=Path, required=True, help="Path to private key PEM")
    keygen_parser.add_argument("--public-key", type=Path, required=True, help="Path to public key PEM")
    keygen_parser.add_argument("--overwrite", action="store_true", help="Overwrite existing key files")

    return parser.parse_args(argv)


def _cmd_verify(ledger_path: Path, json_output: bool, public_key_path: Path | None) -> int:
    def fail(message: str) -> int:
        if json_output:
            print(json.dumps({"status": "failed", "error": message}))
        else:
            print(f"verify failed: {message}", file=sys.stderr)
        return 1

    public_key = None
    if public_key_path is not None:
        try:
            public_key = load_public_key(public_key_path.read_bytes())
        except (OSError, RuntimeError, ValueError) as exc:
            return fail(_format_optional_dependency_error(exc))
    if not ledger_path.exists():
        return fail("ledger file not found")
    try:
        count = _open_ledger(ledger_path).verify(public_key=public_key)
    except IntegrityError as exc:
        return fail(str(exc))
    except OSError as exc:
        return fail(str(exc))
    if json_output:
        print(json.dumps({"status": "ok", "entries": count}))
    else:
        print(f"verification ok ({count} entries)")
    return 0


def _cmd_query(args: argparse.Namespace) -> int:
    if not args.ledger_path.exists():
        print("ledger file not found", file=sys.stderr)
        return 1
    start = _parse_timestamp(args.start) if args.start is not None else None
    if args.start is not None and start is None:
        print("invalid --start timestamp", file=sys.stderr)
        return 2
    end = _parse_timestamp(args.end) if args.end is not None else None
    if args.end is not None and end is None:
        print("invalid --end timestamp", file=sys.stderr)
        return 2
    try:
        flt = LedgerFilter.parse(
            actor_types=args.actor_type,
            categories=args.category,
            severities=args.severity,
            event_types=args.event,
            space_ids=args.space,
            project_ids=args.project,
            flagged_only=args.flagged,
            search=args.search,
            date_from=start,
            date_to=end,
        )
        sort = LedgerSort.parse(field=args.sort, descending=args.desc)
        page = PageRequest.parse(page=args.page, page_size=args.page_size)
        result = _open_ledger(args.ledger_path).query(flt, sort, page)
    except QueryError as exc:
        print(f"query failed: {exc}", file=sys.stderr)
        for issue in exc.issues:
            print(f"  {issue}", file=sys.stderr)
        return 2
    except (IntegrityError, OSError) as exc:
        print(f"query failed: {exc}", file=sys.stderr)
        return 1
    _write_entries(result.entries, args.format, args.output)
    print(
        f"page {result.page}/{max(result.total_pages, 1)} ({result.total_count} matching)",
        file=sys.stderr,
    )
    return 0


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _cmd_compile(rule_set_path: Path, *, check: bool, output_path: Path | None) -> int:
    try:
        rule_set = RuleSet.model_validate(_load_json(rule_set_path))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"compile failed: {exc}", file=sys.stderr)
        return 1
    except PydanticValidationError as exc:
        print("compile failed: rule-set document is malformed", file=sys.stderr)
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            print(f"  {location}: {error['msg']}", file=sys.stderr)
        return 1

    issues = validate(rule_set)
    for issue in issues:
        print(f"error: {issue}", file=sys.stderr)
    for warning in lint(rule_set):
        print(f"warning: {warning}", file=sys.stderr)
    if issues and check:
        return 1

    script = compile_rule_set(rule_set)
    if output_path is not None:
        output_path.write_text(script + "\n", encoding="utf-8")
    else:
        print(script)
    return 0


def _cmd_evaluate(policies_path: Path, action_path: Path) -> int:
    try:
        store = PolicyStore.load(policies_path)
        action = ProposedAction.model_validate(_load_json(action_path))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"evaluate failed: {exc}", file=sys.stderr)
        return 1
    except ValidationError as exc:
        print(f"evaluate failed: {exc}", file=sys.stderr)
        for issue in exc.issues:
            print(f"  {issue}", file=sys.stderr)
        return 1
    except PydanticValidationError as exc:
        print(f"evaluate failed: action document is malformed ({exc.error_count()} errors)", file=sys.stderr)
        return 1
    decision = PolicyEvaluator().evaluate(action, policies=store.active())
    print(decision.model_dump_json(indent=2))
    return 0


def _cmd_keygen(*, private_key_path: Path, public_key_path: Path, overwrite: bool) -> int:
    if not overwrite and (private_key_path.exists() or public_key_path.exists()):
        print("key file already exists", file=sys.stderr)
        return 1
    try:
        write_keypair(private_key_path, public_key_path)
    except RuntimeError as exc:
        print(_format_optional_dependency_error(exc), file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"keygen failed: {exc}", file=sys.stderr)
        return 1
    print(f"wrote {private_key_path} and {public_key_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    try:
        if args.command == "verify":
            return _cmd_verify(args.ledger_path, args.json, args.public_key)
        if args.command == "query":
            return _cmd_query(args)
        if args.command == "compile":
            return _cmd_compile(args.rule_set_path, check=args.check, output_path=args.output)
        if args.command == "evaluate":
            return _cmd_evaluate(args.policies_path, args.action_path)
        if args.command == "keygen":
            return _cmd_keygen(
                private_key_path=args.private_key,
                public_key_path=args.public_key,
                overwrite=args.overwrite,
            )
    except GovernanceError as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return 1
    print("unknown command", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
