import apsw
import pytest

from umadecrypt.errors import OutputError
from umadecrypt.store import PlainStore
from umadecrypt.tables import (
    GenericTable,
    dump_tables,
    list_tables,
    rebuild_catalog,
    validate_catalog,
)

from conftest import SAMPLE_ROWS, make_catalog


@pytest.fixture
def mixed_catalog(tmp_path):
    return make_catalog(
        tmp_path / "source.db",
        SAMPLE_ROWS,
        extra_tables={
            "numbers": (("id INTEGER", "ratio REAL", "label TEXT", "raw BLOB"), [
                (42, 1.5, "x", b"blob"),
                (7, None, None, None),
            ]),
            "empty": (("a", "b"), []),
        },
    )


def test_dump_coerces_values_to_text(mixed_catalog):
    with PlainStore(mixed_catalog) as store:
        result = dump_tables(store)
    assert result.failed == []
    tables = {t.name: t for t in result.tables}
    assert set(tables) == {"a", "numbers", "empty"}
    numbers = tables["numbers"]
    assert numbers.columns == ["id", "ratio", "label", "raw"]
    assert numbers.rows[0] == (("id", "42"), ("ratio", "1.5"), ("label", "x"), ("raw", "blob"))
    assert numbers.rows[1] == (("id", "7"), ("ratio", None), ("label", None), ("raw", None))
    assert tables["empty"].rows == []
    assert len(tables["a"].rows) == len(SAMPLE_ROWS)


def test_dump_then_rebuild_preserves_content(mixed_catalog, tmp_path):
    with PlainStore(mixed_catalog) as store:
        dumped = dump_tables(store)

    out = tmp_path / "out" / "meta"
    result = rebuild_catalog(dumped.tables, out)
    assert sorted(result.created) == ["a", "numbers"]
    assert result.empty == ["empty"]
    assert result.failed == []
    assert validate_catalog(out) == 2

    with PlainStore(out) as store:
        rebuilt = {t.name: t for t in dump_tables(store).tables}
    for table in dumped.tables:
        if not table.rows:
            assert table.name not in rebuilt
            continue
        assert rebuilt[table.name].rows == table.rows

    db = apsw.Connection(str(out))
    try:
        types = {row[2] for row in db.cursor().execute("PRAGMA table_info(numbers)")}
        assert types == {"TEXT"}
        stored = db.cursor().execute("SELECT id, typeof(id) FROM numbers WHERE id = '42'").fetchall()
        assert stored == [("42", "text")]
    finally:
        db.close()


def test_rebuild_replaces_existing_file(tmp_path):
    out = tmp_path / "meta"
    out.write_bytes(b"stale content that is not a database")
    rebuild_catalog([GenericTable("t", [(("k", "v"),)])], out)
    with PlainStore(out) as store:
        assert list_tables(store) == ["t"]


def test_rebuild_uses_first_row_columns(tmp_path):
    table = GenericTable("t", [
        (("a", "1"), ("b", "2")),
        (("a", "3"),),
        (("b", "4"), ("a", "5"), ("extra", "dropped")),
    ])
    out = tmp_path / "meta"
    rebuild_catalog([table], out)
    with PlainStore(out) as store:
        rows = list(store.rows("SELECT * FROM t"))
    assert rows == [
        (("a", "1"), ("b", "2")),
        (("a", "3"), ("b", None)),
        (("a", "5"), ("b", "4")),
    ]


def test_rebuild_isolates_failing_table(tmp_path):
    tables = [
        GenericTable("good", [(("x", "1"),), (("x", "2"),)]),
        # duplicate column names make CREATE TABLE fail
        GenericTable("bad", [(("x", "1"), ("x", "2"))]),
        GenericTable("also_good", [(("y", "3"),)]),
    ]
    out = tmp_path / "meta"
    result = rebuild_catalog(tables, out)
    assert result.created == ["good", "also_good"]
    assert result.failed == ["bad"]
    with PlainStore(out) as store:
        assert sorted(list_tables(store)) == ["also_good", "good"]
        assert len(list(store.rows("SELECT * FROM good"))) == 2


def test_rebuild_quotes_identifiers(tmp_path):
    table = GenericTable('odd "name"', [(("select", "1"), ("col with space", "2"))])
    out = tmp_path / "meta"
    result = rebuild_catalog([table], out)
    assert result.created == ['odd "name"']
    with PlainStore(out) as store:
        assert dump_tables(store).tables == [table]


class FlakyStore:
    """Wraps a store and fails reading one table."""

    def __init__(self, store, broken):
        self.store = store
        self.broken = broken

    def rows(self, sql):
        if self.broken in sql:
            raise apsw.SQLError("SQLError: unsupported column encoding")
        return self.store.rows(sql)


def test_dump_isolates_failing_table(mixed_catalog, caplog):
    with PlainStore(mixed_catalog) as store:
        result = dump_tables(FlakyStore(store, '"numbers"'))
    assert result.failed == ["numbers"]
    assert sorted(t.name for t in result.tables) == ["a", "empty"]
    assert any("numbers" in m for m in caplog.messages)


def test_dump_survives_invalid_utf8(tmp_path):
    path = make_catalog(tmp_path / "source.db", SAMPLE_ROWS, extra_tables={"good": (("v",), [("fine",)])})
    db = apsw.Connection(str(path))
    cur = db.cursor()
    cur.execute("CREATE TABLE bad (v TEXT)")
    cur.execute("INSERT INTO bad VALUES (CAST(x'ff80fe' AS TEXT))")
    db.close()

    with PlainStore(path) as store:
        result = dump_tables(store)
    assert result.failed == []
    tables = {t.name: t for t in result.tables}
    assert tables["good"].rows == [(("v", "fine"),)]
    assert tables["bad"].rows == [(("v", "\ufffd" * 3),)]


def test_dump_renders_floats_like_sqlite(tmp_path):
    path = make_catalog(tmp_path / "source.db", SAMPLE_ROWS,
                        extra_tables={"f": (("x REAL",), [(1e20,), (2.5,)])})
    with PlainStore(path) as store:
        rows = list(store.rows("SELECT x FROM f"))
    assert rows == [(("x", "1.0e+20"),), (("x", "2.5"),)]


def test_rebuild_into_unusable_path(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"not a directory")
    with pytest.raises(OutputError):
        rebuild_catalog([GenericTable("t", [(("k", "v"),)])], blocker / "sub" / "meta.db")

    target = tmp_path / "dir_in_the_way"
    target.mkdir()
    with pytest.raises(OutputError):
        rebuild_catalog([GenericTable("t", [(("k", "v"),)])], target)
