"""Command line entry point for inspecting and exporting FlowState documents."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .services.settings import Settings, SettingsStore, redact_secret
from .session.orchestrator import DocumentNotFoundError, SessionOrchestrator
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_EXPORT_FORMATS = ("pdf", "docx", "md")


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else None
    logging_utils.setup_logging(logging_utils.resolve_level(level), force=force)


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings, falling back to defaults on unreadable files."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``flowstate`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = _env_flag("FLOWSTATE_DEBUG")
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("FLOWSTATE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
    if args.command is None:
        parser.print_help()
        return 0

    try:
        return asyncio.run(_run_command(args, settings))
    except DocumentNotFoundError as exc:
        print(f"No document with id {exc.args[0]!r}", file=sys.stderr)
        return 1
    except KeyError as exc:
        print(f"Not found: {exc.args[0]}", file=sys.stderr)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowstate",
        description="Inspect, snapshot and export FlowState documents.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.flowstate/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("list", help="List stored documents.")

    new = commands.add_parser("new", help="Create a document.")
    new.add_argument("--title", help="Fixed title instead of one derived from the content.")
    source = new.add_mutually_exclusive_group()
    source.add_argument("--content", help="Initial content.")
    source.add_argument("--content-file", metavar="PATH", help="Read initial content from a file.")

    export = commands.add_parser("export", help="Export a document to PDF, DOCX or Markdown.")
    export.add_argument("document_id")
    export.add_argument("--format", dest="fmt", choices=_EXPORT_FORMATS, default="md")
    export.add_argument("--output", metavar="PATH", help="Destination file (defaults to a name derived from the title).")

    history = commands.add_parser("history", help="List a document's snapshots, newest first.")
    history.add_argument("document_id")

    snapshot = commands.add_parser("snapshot", help="Capture a manual snapshot.")
    snapshot.add_argument("document_id")
    snapshot.add_argument("--label", default="Manual snapshot")

    restore = commands.add_parser("restore", help="Restore a snapshot into its document.")
    restore.add_argument("document_id")
    restore.add_argument("snapshot_id")

    analyze = commands.add_parser("analyze", help="Ask the model for one proactive suggestion.")
    analyze.add_argument("document_id")

    stats = commands.add_parser("stats", help="Show word count and readability.")
    stats.add_argument("document_id")
    return parser


async def _run_command(args: argparse.Namespace, settings: Settings, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    session = SessionOrchestrator.from_settings(settings)
    try:
        if args.command == "list":
            return _cmd_list(session, out)
        if args.command == "new":
            return await _cmd_new(session, args, out)
        await session.switch_document(args.document_id)
        if args.command == "export":
            return _cmd_export(session, args, out)
        if args.command == "history":
            return _cmd_history(session, out)
        if args.command == "snapshot":
            snap = session.capture_snapshot(args.label)
            print(snap.id if snap is not None else "No snapshot taken (content empty or unchanged).", file=out)
            return 0
        if args.command == "restore":
            session.restore_snapshot(args.snapshot_id)
            print(f"Restored {args.snapshot_id}", file=out)
            return 0
        if args.command == "analyze":
            return await _cmd_analyze(session, settings, out)
        if args.command == "stats":
            return _cmd_stats(session, out)
        raise ValueError(f"Unknown command {args.command!r}")
    finally:
        await session.aclose()


def _cmd_list(session: SessionOrchestrator, out: TextIO) -> int:
    active_id = session.repository.get_active_id()
    for document in session.list_documents():
        marker = "*" if document.id == active_id else " "
        print(f"{marker} {document.id}\t{document.last_modified.isoformat()}\t{document.title}", file=out)
    return 0


async def _cmd_new(session: SessionOrchestrator, args: argparse.Namespace, out: TextIO) -> int:
    content = args.content or ""
    if args.content_file:
        content = Path(args.content_file).expanduser().read_text(encoding="utf-8")
    document = await session.create_document(title=args.title)
    if content:
        session.update_content(content)
    await session.flush()
    print(document.id, file=out)
    return 0


def _cmd_export(session: SessionOrchestrator, args: argparse.Namespace, out: TextIO) -> int:
    result = session.export(args.fmt)
    target = Path(args.output).expanduser() if args.output else Path.cwd() / result.filename
    target.write_bytes(result.data)
    print(str(target), file=out)
    return 0


def _cmd_history(session: SessionOrchestrator, out: TextIO) -> int:
    for snap in session.history.entries:
        print(f"{snap.id}\t{snap.timestamp.isoformat()}\t{snap.trigger}\t{snap.label}", file=out)
    return 0


async def _cmd_analyze(session: SessionOrchestrator, settings: Settings, out: TextIO) -> int:
    if not settings.api_key:
        print("No API key configured; set FLOWSTATE_API_KEY or --set api_key=...", file=sys.stderr)
        return 2
    suggestion = await session.analyze_now()
    if suggestion is None:
        print("No suggestion.", file=out)
    else:
        json.dump(suggestion.to_dict(), out, indent=2)
        out.write("\n")
    return 0


def _cmd_stats(session: SessionOrchestrator, out: TextIO) -> int:
    stats = session.stats()
    print(f"Words: {stats.words}", file=out)
    print(f"Characters: {stats.characters}", file=out)
    print(f"Reading time: {stats.reading_minutes} min", file=out)
    print(f"Readability: {stats.readability} ({stats.label})", file=out)
    return 0


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    if raw_value.lower() in {"none", "null"} and target is not str:
        return None
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if target is dict:
        try:
            value = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(value, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return value
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return dict
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    return args[0] if args else origin


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    meta = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides),
        "environment_variables": sorted(name for name in os.environ if name.startswith("FLOWSTATE_")),
    }
    json.dump({"settings": payload, "meta": meta}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
