from __future__ import annotations

import re
from pathlib import Path

import pytest

from pgtemplate.cleaner import (
    DEFAULT_REWRITERS,
    DumpCleaner,
    clean_dump,
    collapse_blank_lines,
    strip_comments,
    strip_ownership,
    strip_privileges,
    strip_psql_meta_commands,
    strip_schema_statements,
    strip_tablespaces,
    template_rewriters,
    unqualify_schema,
)

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"


def _fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def test_raw_dump_cleans_to_expected_template() -> None:
    cleaned = clean_dump(_fixture("raw_schema_dump.sql"))

    assert cleaned == _fixture("schema_dump.sql")


def test_qualified_dump_cleans_to_unqualified_template() -> None:
    raw = _fixture("raw_schema_dump_qualified.sql")

    cleaned = clean_dump(raw, rewriters=template_rewriters("tenant_a"))

    assert cleaned == _fixture("schema_dump_unqualified.sql")


@pytest.mark.parametrize("name", ["raw_schema_dump.sql", "raw_schema_dump_qualified.sql"])
def test_cleaned_dump_excludes_unwanted_statements(name: str) -> None:
    cleaned = clean_dump(_fixture(name))

    assert re.search(r"CREATE TABLE (?:\w+\.)?posts \(", cleaned)
    assert not re.search(r"GRANT|REVOKE", cleaned)
    assert "default_tablespace" not in cleaned
    assert "OWNER TO" not in cleaned
    assert "CREATE SCHEMA" not in cleaned
    assert "SET search_path" not in cleaned
    assert "set_config('search_path'" not in cleaned
    assert "restrict" not in cleaned
    assert "--" not in cleaned
    assert "\n\n" not in cleaned
    assert not cleaned.startswith("\n")


@pytest.mark.parametrize("name", ["raw_schema_dump.sql", "raw_schema_dump_qualified.sql"])
def test_cleaning_is_idempotent(name: str) -> None:
    once = clean_dump(_fixture(name))

    assert clean_dump(once) == once


def test_comment_lines_are_removed_and_order_is_kept() -> None:
    raw = (
        "-- header\n"
        "CREATE TABLE a (id integer);\n"
        "    -- indented note\n"
        "CREATE TABLE b (id integer);\n"
        "--\n"
        "CREATE INDEX a_id ON a USING btree (id);"
    )

    assert strip_comments(raw) == (
        "CREATE TABLE a (id integer);\n"
        "CREATE TABLE b (id integer);\n"
        "CREATE INDEX a_id ON a USING btree (id);"
    )


def test_trailing_comments_are_cut_outside_literals() -> None:
    raw = "CREATE TABLE t (\n    a text DEFAULT '--' -- note\n);\n"

    assert strip_comments(raw) == "CREATE TABLE t (\n    a text DEFAULT '--'\n);\n"


def test_comment_markers_inside_multiline_literals_are_kept() -> None:
    raw = (
        "COMMENT ON COLUMN posts.body IS 'Rendered markdown.\n"
        "Use title -- never body -- for previews.';\n"
        "CREATE INDEX posts_title ON posts USING btree (title); -- lookups\n"
    )

    assert strip_comments(raw) == (
        "COMMENT ON COLUMN posts.body IS 'Rendered markdown.\n"
        "Use title -- never body -- for previews.';\n"
        "CREATE INDEX posts_title ON posts USING btree (title);\n"
    )


def test_comment_markers_inside_function_bodies_are_kept() -> None:
    raw = (
        "CREATE FUNCTION touch() RETURNS trigger\n"
        "    LANGUAGE plpgsql\n"
        "    AS $_$\n"
        "BEGIN\n"
        "    -- refresh the timestamp\n"
        "    NEW.updated_at := E'\\'--\\'';\n"
        "    RETURN NEW;\n"
        "END;\n"
        "$_$;\n"
    )

    assert strip_comments(raw) == raw


def test_psql_meta_commands_are_removed() -> None:
    raw = "\\restrict abc123\nSET row_security = off;\n\\unrestrict abc123\n"

    assert strip_psql_meta_commands(raw) == "SET row_security = off;\n"


def test_ownership_statements_spanning_lines_are_removed() -> None:
    raw = (
        "CREATE TABLE posts (id integer);\n"
        "ALTER TABLE posts\n"
        "    OWNER TO admin;\n"
        "ALTER FUNCTION touch() OWNER TO admin;\n"
        "ALTER SEQUENCE posts_id_seq OWNED BY posts.id;\n"
    )

    assert strip_ownership(raw) == (
        "CREATE TABLE posts (id integer);\n"
        "ALTER SEQUENCE posts_id_seq OWNED BY posts.id;\n"
    )


def test_ownership_removal_does_not_swallow_previous_statement() -> None:
    raw = (
        "ALTER TABLE ONLY posts ALTER COLUMN id SET DEFAULT nextval('posts_id_seq'::regclass);\n"
        "ALTER TABLE posts OWNER TO admin;\n"
    )

    assert strip_ownership(raw) == (
        "ALTER TABLE ONLY posts ALTER COLUMN id SET DEFAULT nextval('posts_id_seq'::regclass);\n"
    )


def test_privilege_statements_are_removed() -> None:
    raw = (
        "REVOKE ALL ON SCHEMA public FROM PUBLIC;\n"
        "GRANT USAGE\n"
        "    ON SCHEMA public TO app;\n"
        "ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT SELECT ON TABLES TO app;\n"
        "CREATE TABLE grants (revoked_at timestamp);\n"
    )

    assert strip_privileges(raw) == "CREATE TABLE grants (revoked_at timestamp);\n"


def test_columns_named_like_privilege_keywords_are_kept() -> None:
    raw = (
        "CREATE TABLE perms (\n"
        "    id integer,\n"
        "    revoke boolean,\n"
        "    \"grant\" text\n"
        ");\n"
        "CREATE INDEX perms_id ON perms USING btree (id);\n"
    )

    assert clean_dump(raw) == raw


def test_keywords_inside_view_definitions_are_kept() -> None:
    raw = (
        "CREATE VIEW active_perms AS\n"
        " SELECT id,\n"
        "    revoke\n"
        "   FROM perms\n"
        "  WHERE (NOT revoke);\n"
        "CREATE VIEW owners AS\n"
        " SELECT 'ALTER TABLE x OWNER TO y;'::text AS hint;\n"
    )

    assert clean_dump(raw) == raw


def test_statements_inside_function_bodies_are_kept() -> None:
    raw = (
        "CREATE FUNCTION provision(role_name text) RETURNS void\n"
        "    LANGUAGE plpgsql\n"
        "    AS $$\n"
        "BEGIN\n"
        "    GRANT USAGE ON SCHEMA app TO app_user;\n"
        "    REVOKE ALL ON SCHEMA app FROM PUBLIC;\n"
        "    ALTER TABLE posts OWNER TO app_user;\n"
        "    SET search_path TO app;\n"
        "    SET default_tablespace = '';\n"
        "END;\n"
        "$$;\n"
        "ALTER FUNCTION provision(text) OWNER TO admin;\n"
    )

    cleaned = clean_dump(raw)

    assert cleaned == raw[: -len("ALTER FUNCTION provision(text) OWNER TO admin;\n")]
    assert clean_dump(cleaned) == cleaned


def test_tablespace_statements_are_removed() -> None:
    raw = "SET default_tablespace = '';\nSET default_table_access_method = heap;\n"

    assert strip_tablespaces(raw) == "SET default_table_access_method = heap;\n"


def test_schema_statements_are_removed() -> None:
    raw = (
        "CREATE SCHEMA IF NOT EXISTS tenant;\n"
        "SET search_path TO tenant, public;\n"
        "SELECT pg_catalog.set_config('search_path', '', false);\n"
        "SELECT set_config('statement_timeout', '0', false);\n"
    )

    assert strip_schema_statements(raw) == "SELECT set_config('statement_timeout', '0', false);\n"


def test_collapse_blank_lines() -> None:
    assert collapse_blank_lines("\n\n  \nA;\n\n\t\nB;\n\n") == "A;\nB;\n"
    assert collapse_blank_lines("A;\n\nB;") == "A;\nB;"
    assert collapse_blank_lines("\n \n") == ""
    assert collapse_blank_lines("") == ""


def test_copy_blocks_pass_through() -> None:
    raw = "COPY posts (id, title) FROM stdin;\n1\thello\n\\.\n"

    assert clean_dump(raw) == raw


def test_unrecognised_text_is_left_alone() -> None:
    raw = "not sql at all\nstill not sql\n"

    assert clean_dump(raw) == raw


def test_unqualify_schema_handles_quoted_names() -> None:
    rewriter = unqualify_schema("Tenant A")

    assert rewriter('CREATE TABLE "Tenant A".posts (id int);') == "CREATE TABLE posts (id int);"


def test_unqualify_schema_only_matches_whole_names() -> None:
    rewriter = unqualify_schema("tenant_a")

    text = "CREATE TABLE other_tenant_a.posts (id int);"
    assert rewriter(text) == text


def test_unqualify_schema_rejects_blank_names() -> None:
    with pytest.raises(ValueError):
        unqualify_schema("  ")


def test_template_rewriters_keep_blank_line_collapse_last() -> None:
    assert template_rewriters() is DEFAULT_REWRITERS
    rewriters = template_rewriters("tenant_a")
    assert len(rewriters) == len(DEFAULT_REWRITERS) + 1
    assert rewriters[-1] is collapse_blank_lines
    assert rewriters[-2].__name__ == "unqualify_schema"


def test_dump_cleaner_tracks_removed_characters() -> None:
    raw = _fixture("raw_schema_dump.sql")
    cleaner = DumpCleaner(raw)

    cleaned = cleaner.clean()

    assert cleaner.text == raw
    stats = cleaner.stats()
    assert set(stats) == {rewriter.__name__ for rewriter in DEFAULT_REWRITERS}
    assert stats["strip_comments"] > 0
    assert stats["strip_tablespaces"] == len("SET default_tablespace = '';\n")
    assert stats["strip_psql_meta_commands"] == 0
    assert sum(stats.values()) == len(raw) - len(cleaned)
