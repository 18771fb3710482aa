"""Rewriters that turn raw ``pg_dump`` output into a reusable schema template.

Every rewriter is a pure ``str -> str`` function. :data:`DEFAULT_REWRITERS`
applies them in a fixed order: line-level removals first, then statement
removals, then blank-line collapsing last so removals never leave gaps behind.

Statements are split on ``;`` outside string literals, quoted identifiers
and dollar-quoted bodies, so function bodies and column lists are never
mistaken for top-level statements. A removal takes the statement from the
start of its first line through the end of the line holding its ``;``.

Example
-------
>>> clean_dump("-- header\\nSET search_path = tenant;\\n\\nCREATE TABLE posts (title text);\\n")
'CREATE TABLE posts (title text);\\n'
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, MutableMapping, Sequence, Tuple

logger = logging.getLogger(__name__)

Rewriter = Callable[[str], str]

_PSQL_META_LINE = re.compile(r"^\\(?:un)?restrict\b[^\n]*(?:\n|\Z)", re.MULTILINE)
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_LINE_REST = re.compile(r"[ \t]*(?:\n|\Z)")
_LEADING = re.compile(r"(?:\s|--[^\n]*)*")

# Matched where a statement starts. pg_dump writes keywords in upper case.
_OWNERSHIP = re.compile(r"ALTER\s[^;]*\bOWNER\s+TO\b")
_PRIVILEGES = re.compile(r"(?:GRANT|REVOKE|ALTER\s+DEFAULT\s+PRIVILEGES)\b")
_TABLESPACE = re.compile(r"SET\s+default_tablespace\b")
_SCHEMA_STATEMENTS = re.compile(
    r"(?:CREATE\s+SCHEMA\b"
    r"|SET\s+search_path\b"
    r"|SELECT\s+(?:pg_catalog\.)?set_config\(\s*'search_path')"
)


def _is_word(char: str) -> bool:
    return char.isalnum() or char == "_"


def _skip_quoted(text: str, index: int, *, backslash: bool) -> int:
    """Return the index just past the literal or identifier opening at ``index``."""

    quote = text[index]
    position = index + 1
    length = len(text)
    while position < length:
        char = text[position]
        if backslash and char == "\\":
            position += 2
            continue
        if char == quote:
            return position + 1
        position += 1
    return length


def _top_level_events(text: str) -> Iterator[Tuple[str, int, int]]:
    """Yield ``("comment" | "terminator", start, end)`` outside quoted text.

    Single-quoted literals (including ``E''`` escapes), double-quoted
    identifiers and ``$tag$`` bodies are skipped whole, across lines.
    A doubled ``''`` reads as two adjacent literals, which skips the same span.
    """

    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char == "'":
            escaped = (
                index > 0
                and text[index - 1] in "eE"
                and (index < 2 or not _is_word(text[index - 2]))
            )
            index = _skip_quoted(text, index, backslash=escaped)
            continue
        if char == '"':
            index = _skip_quoted(text, index, backslash=False)
            continue
        if char == "$" and (index == 0 or not _is_word(text[index - 1])):
            match = _DOLLAR_TAG.match(text, index)
            if match:
                close = text.find(match.group(0), match.end())
                index = length if close == -1 else close + len(match.group(0))
                continue
        if char == "-" and text.startswith("--", index):
            end = text.find("\n", index)
            end = length if end == -1 else end
            yield "comment", index, end
            index = end
            continue
        if char == ";":
            yield "terminator", index, index + 1
        index += 1


def _split_statements(text: str) -> list[str]:
    """Split ``text`` after every top-level ``;`` and the rest of its line."""

    chunks: list[str] = []
    start = 0
    for kind, _begin, end in _top_level_events(text):
        if kind != "terminator":
            continue
        rest = _LINE_REST.match(text, end)
        stop = rest.end() if rest else end
        chunks.append(text[start:stop])
        start = stop
    if start < len(text):
        chunks.append(text[start:])
    return chunks


def _remove_statements(text: str, pattern: re.Pattern[str]) -> str:
    """Drop every statement whose first keyword matches ``pattern``.

    Comment and blank lines ahead of a removed statement are kept.
    """

    pieces = []
    for chunk in _split_statements(text):
        lead = _LEADING.match(chunk).end()
        if pattern.match(chunk, lead):
            pieces.append(chunk[: chunk.rfind("\n", 0, lead) + 1])
        else:
            pieces.append(chunk)
    return "".join(pieces)


def strip_comments(text: str) -> str:
    """Remove comment lines entirely and cut trailing ``--`` annotations.

    Markers inside literals, quoted identifiers and dollar-quoted bodies
    are left alone.
    """

    pieces = []
    cursor = 0
    for kind, start, end in _top_level_events(text):
        if kind != "comment":
            continue
        line_start = text.rfind("\n", 0, start) + 1
        prefix = text[line_start:start]
        if prefix.strip():
            pieces.append(text[cursor : line_start + len(prefix.rstrip())])
            cursor = end
        else:
            pieces.append(text[cursor:line_start])
            cursor = min(end + 1, len(text))
    if not pieces:
        return text
    pieces.append(text[cursor:])
    return "".join(pieces)


def strip_psql_meta_commands(text: str) -> str:
    """Remove ``\\restrict``/``\\unrestrict`` lines, which carry a random key."""

    return _PSQL_META_LINE.sub("", text)


def strip_ownership(text: str) -> str:
    """Remove ``ALTER ... OWNER TO ...;`` statements."""

    return _remove_statements(text, _OWNERSHIP)


def strip_privileges(text: str) -> str:
    """Remove ``GRANT``, ``REVOKE`` and ``ALTER DEFAULT PRIVILEGES`` statements."""

    return _remove_statements(text, _PRIVILEGES)


def strip_tablespaces(text: str) -> str:
    return _remove_statements(text, _TABLESPACE)


def strip_schema_statements(text: str) -> str:
    """Remove ``CREATE SCHEMA`` and every form of search path assignment."""

    return _remove_statements(text, _SCHEMA_STATEMENTS)


def collapse_blank_lines(text: str) -> str:
    """Drop empty and whitespace-only lines, keeping a trailing newline."""

    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return ""
    collapsed = "\n".join(lines)
    if text.endswith("\n"):
        collapsed += "\n"
    return collapsed


def unqualify_schema(schema: str) -> Rewriter:
    """Return a rewriter that drops ``schema.`` and ``"schema".`` qualifiers.

    Recent ``pg_dump`` releases qualify every object with its schema name,
    which pins the template to the schema it was taken from.
    """

    name = schema.strip()
    if not name:
        raise ValueError("schema must be a non-empty string")
    escaped = re.escape(name)
    quoted = re.escape('"' + name.replace('"', '""') + '"')
    pattern = re.compile(rf'(?<![\w"$])(?:{quoted}|{escaped})\.(?=[\w"])')

    def _unqualify(text: str) -> str:
        return pattern.sub("", text)

    _unqualify.__name__ = "unqualify_schema"
    return _unqualify


DEFAULT_REWRITERS: Tuple[Rewriter, ...] = (
    strip_comments,
    strip_psql_meta_commands,
    strip_ownership,
    strip_privileges,
    strip_tablespaces,
    strip_schema_statements,
    collapse_blank_lines,
)


def template_rewriters(schema: str | None = None) -> Tuple[Rewriter, ...]:
    """Default rewriters, plus :func:`unqualify_schema` when ``schema`` is given.

    Blank-line collapsing stays last.
    """

    if not schema:
        return DEFAULT_REWRITERS
    return (*DEFAULT_REWRITERS[:-1], unqualify_schema(schema), DEFAULT_REWRITERS[-1])


@dataclass
class DumpCleaner:
    """Apply an ordered set of rewriters to a raw dump.

    The raw text is never modified; :meth:`clean` returns a new string and
    records how many characters each rewriter removed.
    """

    text: str
    rewriters: Sequence[Rewriter] = DEFAULT_REWRITERS
    _removed: MutableMapping[str, int] = field(default_factory=dict, init=False, repr=False)

    def clean(self) -> str:
        self._removed.clear()
        result = self.text
        for rewriter in self.rewriters:
            before = len(result)
            result = rewriter(result)
            name = getattr(rewriter, "__name__", repr(rewriter))
            self._removed[name] = self._removed.get(name, 0) + before - len(result)
        logger.debug(
            "Cleaned dump: %s -> %s characters (%s)",
            len(self.text),
            len(result),
            ", ".join(f"{name}={count}" for name, count in self._removed.items()),
        )
        return result

    def stats(self) -> Mapping[str, int]:
        """Characters removed per rewriter during the last :meth:`clean`."""

        return dict(self._removed)


def clean_dump(text: str, *, rewriters: Sequence[Rewriter] = DEFAULT_REWRITERS) -> str:
    return DumpCleaner(text, rewriters=rewriters).clean()


__all__ = [
    "DEFAULT_REWRITERS",
    "DumpCleaner",
    "Rewriter",
    "clean_dump",
    "collapse_blank_lines",
    "strip_comments",
    "strip_ownership",
    "strip_privileges",
    "strip_psql_meta_commands",
    "strip_schema_statements",
    "strip_tablespaces",
    "template_rewriters",
    "unqualify_schema",
]
