"""pgtemplate package.

Produce structure-only SQL templates of a single PostgreSQL schema. The
public API is small: :class:`SchemaDumper` runs ``pg_dump`` and cleans its
output, :func:`clean_dump` cleans text that was captured elsewhere.
"""

from __future__ import annotations

from .cleaner import DEFAULT_REWRITERS, DumpCleaner, clean_dump, template_rewriters, unqualify_schema
from .config import DumperSettings, load_settings
from .dumper import (
    DumpFailure,
    DumpRequest,
    DumpSuccess,
    PgDumpError,
    SchemaDumper,
    build_pg_dump_command,
    invoke_pg_dump,
)

__all__ = [
    "DEFAULT_REWRITERS",
    "DumpCleaner",
    "DumpFailure",
    "DumpRequest",
    "DumpSuccess",
    "DumperSettings",
    "PgDumpError",
    "SchemaDumper",
    "build_pg_dump_command",
    "clean_dump",
    "invoke_pg_dump",
    "load_settings",
    "template_rewriters",
    "unqualify_schema",
]
