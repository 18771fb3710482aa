"""Run ``pg_dump`` for a single schema and turn its output into a template.

The generated template does not contain:

* privilege statements (GRANT/REVOKE)
* tablespace assignments
* ownership information
* table data

Example
-------
>>> dumper = SchemaDumper("my_db", "my_schema")  # doctest: +SKIP
>>> dumper.dump_to("path/to/template.sql")  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Mapping, Sequence, Tuple, Union

from .cleaner import DumpCleaner, Rewriter, template_rewriters
from .config import DumperSettings

logger = logging.getLogger(__name__)

_COPY_STATEMENT = re.compile(r"^COPY\b[^\n]*\bFROM\s+stdin;", re.MULTILINE | re.IGNORECASE)
_COMMAND_NOT_FOUND = 127
_URI_PASSWORD = re.compile(r"(://[^:/@\s]*:)[^@\s]*@")
_KEYWORD_PASSWORD = re.compile(r"(\bpassword\s*=\s*)(?:'[^']*'|\S+)", re.IGNORECASE)


def _redact_command(command: Sequence[str], placeholder: str = "[REDACTED]") -> str:
    """Render ``command`` for logs with connection-string passwords masked."""

    parts = []
    for part in command:
        part = _URI_PASSWORD.sub(rf"\g<1>{placeholder}@", part)
        part = _KEYWORD_PASSWORD.sub(rf"\g<1>{placeholder}", part)
        parts.append(part)
    return " ".join(parts)


class PgDumpError(RuntimeError):
    """Raised when ``pg_dump`` exits with a non-zero status.

    The message is the tool's standard error, verbatim.
    """

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


@dataclass(frozen=True)
class DumpRequest:
    """Identifies exactly one schema-only dump target."""

    database: str
    schema: str

    def __post_init__(self) -> None:
        for name in ("database", "schema"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class DumpSuccess:
    output: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DumpFailure:
    message: str
    returncode: int

    @property
    def ok(self) -> bool:
        return False

    def to_error(self) -> PgDumpError:
        return PgDumpError(self.message, returncode=self.returncode)


DumpOutcome = Union[DumpSuccess, DumpFailure]
CommandRunner = Callable[..., CommandResult]


def build_pg_dump_command(request: DumpRequest, *, executable: str = "pg_dump") -> list[str]:
    """Return the argument list for a schema-only, privilege-free dump."""

    return [
        executable,
        "--schema",
        request.schema,
        "--schema-only",
        "--no-privileges",
        "--no-tablespaces",
        "--no-owner",
        "--dbname",
        request.database,
    ]


def run_command(
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``args`` to completion and capture its output as text.

    A missing executable is reported like a shell would: exit status 127 and
    a ``command not found`` message on standard error.
    """

    command = list(args)
    process_env = None
    if env:
        process_env = dict(os.environ)
        process_env.update(env)
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=False,
            env=process_env,
        )
    except FileNotFoundError:
        return CommandResult(
            args=tuple(command),
            returncode=_COMMAND_NOT_FOUND,
            stdout="",
            stderr=f"{command[0]}: command not found\n",
        )
    return CommandResult(
        args=tuple(command),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def invoke_pg_dump(
    request: DumpRequest,
    *,
    settings: DumperSettings | None = None,
    runner: CommandRunner = run_command,
) -> DumpOutcome:
    """Run ``pg_dump`` once for ``request`` and classify the result."""

    resolved = settings or DumperSettings()
    command = build_pg_dump_command(request, executable=resolved.pg_dump)
    logger.debug("Running %s", _redact_command(command))
    result = runner(command, env=resolved.environment())
    if result.returncode != 0:
        return DumpFailure(message=result.stderr, returncode=result.returncode)
    return DumpSuccess(output=result.stdout)


class SchemaDumper:
    """Generate cleaned SQL templates of a PostgreSQL schema's structure."""

    def __init__(
        self,
        database: str,
        schema: str,
        *,
        settings: DumperSettings | None = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.request = DumpRequest(database=database, schema=schema)
        self.settings = settings or DumperSettings()
        self._runner = runner

    @property
    def database(self) -> str:
        return self.request.database

    @property
    def schema(self) -> str:
        return self.request.schema

    def _rewriters(self) -> Tuple[Rewriter, ...]:
        if self.settings.strip_schema_qualifier:
            return template_rewriters(self.request.schema)
        return template_rewriters()

    def dump(self) -> str:
        """Return the cleaned template, raising :class:`PgDumpError` on failure."""

        outcome = invoke_pg_dump(self.request, settings=self.settings, runner=self._runner)
        if isinstance(outcome, DumpFailure):
            raise outcome.to_error()
        if _COPY_STATEMENT.search(outcome.output):
            logger.warning(
                "pg_dump emitted table data for schema %s in %s; COPY blocks are kept as-is.",
                self.request.schema,
                self.request.database,
            )
        return DumpCleaner(outcome.output, rewriters=self._rewriters()).clean()

    def dump_to(self, destination: Union[str, Path, IO[str]], *, mode: str = "w") -> None:
        """Write the template to a file path (opened with ``mode``) or a text stream.

        Nothing is written when ``pg_dump`` fails.
        """

        sql = self.dump()
        if hasattr(destination, "write"):
            destination.write(sql)  # type: ignore[union-attr]
            return
        with Path(destination).open(mode, encoding="utf-8") as handle:
            handle.write(sql)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "DumpFailure",
    "DumpOutcome",
    "DumpRequest",
    "DumpSuccess",
    "PgDumpError",
    "SchemaDumper",
    "build_pg_dump_command",
    "invoke_pg_dump",
    "run_command",
]
