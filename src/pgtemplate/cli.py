"""Command-line entry point for producing schema templates.

* ``pgtemplate dump DATABASE SCHEMA`` runs ``pg_dump`` and writes the cleaned
  template to ``--output`` or stdout.
* ``pgtemplate clean [INPUT]`` cleans an existing raw dump without touching a
  database.

Errors from ``pg_dump`` are shown verbatim on stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from .cleaner import DumpCleaner, template_rewriters
from .config import load_settings
from .dumper import PgDumpError, SchemaDumper


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="File to write the template to (default: stdout).",
    )
    parser.add_argument(
        "--append",
        action="store_true",
        help="Append to --output instead of truncating it.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log pg_dump invocations and cleaning statistics.",
    )


def _build_dump_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgtemplate dump",
        description="Dump the structure of a PostgreSQL schema as a reusable SQL template.",
    )
    parser.add_argument("database", help="Database name or connection string.")
    parser.add_argument("schema", help="Schema to dump.")
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON settings file (pg_dump path, host, port, user, password).",
    )
    parser.add_argument(
        "--pg-dump",
        dest="pg_dump",
        help="pg_dump executable to run (default: pg_dump on PATH).",
    )
    parser.add_argument(
        "--strip-schema-qualifier",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Drop '<schema>.' prefixes so the template replays into any schema.",
    )
    _add_common_arguments(parser)
    return parser


def _build_clean_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgtemplate clean",
        description="Clean an existing pg_dump output file into a template.",
    )
    parser.add_argument(
        "input",
        nargs="?",
        type=Path,
        help="Raw dump file (default: stdin).",
    )
    parser.add_argument(
        "--schema",
        help="Drop qualifiers for this schema name from the template.",
    )
    _add_common_arguments(parser)
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _write_output(sql: str, output: Path | None, *, append: bool) -> None:
    if output is None:
        sys.stdout.write(sql)
        return
    destination = output.expanduser()
    with destination.open("a" if append else "w", encoding="utf-8") as handle:
        handle.write(sql)


def _run_dump(argv: Sequence[str]) -> int:
    parser = _build_dump_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        settings = load_settings(args.config).merged(
            pg_dump=args.pg_dump,
            strip_schema_qualifier=args.strip_schema_qualifier,
        )
        dumper = SchemaDumper(args.database, args.schema, settings=settings)
    except (TypeError, ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))

    try:
        if args.output is None:
            sys.stdout.write(dumper.dump())
        else:
            dumper.dump_to(args.output.expanduser(), mode="a" if args.append else "w")
    except PgDumpError as exc:
        sys.stderr.write(f"error: {str(exc).rstrip()}\n")
        return 1
    except OSError as exc:
        sys.stderr.write(f"error: unable to write {args.output}: {exc}\n")
        return 1

    if args.output is not None:
        sys.stderr.write(f"Template for {args.schema} written to {args.output}\n")
    return 0


def _run_clean(argv: Sequence[str]) -> int:
    parser = _build_clean_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.input is None:
        raw = sys.stdin.read()
    else:
        source = args.input.expanduser()
        if not source.is_file():
            parser.error(f"Input file does not exist: {source}")
        raw = source.read_text(encoding="utf-8")

    sql = DumpCleaner(raw, rewriters=template_rewriters(args.schema)).clean()
    try:
        _write_output(sql, args.output, append=args.append)
    except OSError as exc:
        sys.stderr.write(f"error: unable to write {args.output}: {exc}\n")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    if argv is None:
        argv = list(sys.argv[1:])
    else:
        argv = list(argv)
    if argv and argv[0] == "clean":
        return _run_clean(argv[1:])
    if argv and argv[0] == "dump":
        argv = argv[1:]
    return _run_dump(argv)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())


def console_main() -> None:
    """Entry point for ``pgtemplate`` console script."""

    sys.exit(main())


def dump_console_main() -> None:
    """Entry point for ``pgtemplate-dump`` console script."""

    argv = ["dump", *sys.argv[1:]]
    sys.exit(main(argv))
