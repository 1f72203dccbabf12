from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Tuple, Union

import apsw

from .errors import CipherStoreError, OutputError, TableDumpError
from .log import get_logger
from .store import PlainStore, quote_ident

_LOGGER = get_logger(__name__)

LIST_TABLES_SQL = "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"

GenericRow = Tuple[Tuple[str, Optional[str]], ...]


class GenericTable(NamedTuple):
    name: str
    rows: List[GenericRow]

    @property
    def columns(self) -> List[str]:
        if not self.rows:
            return []
        return [name for name, _ in self.rows[0]]


class DumpResult(NamedTuple):
    tables: List[GenericTable]
    failed: List[str]


class RebuildResult(NamedTuple):
    created: List[str]
    empty: List[str]
    failed: List[str]


# ==========================================
# DUMP
# ==========================================
def list_tables(store) -> List[str]:
    names = []
    for row in store.rows(LIST_TABLES_SQL):
        _, name = row[0]
        if name:
            names.append(name)
    return names


def dump_table(store, name: str) -> GenericTable:
    try:
        rows = list(store.rows(f"SELECT * FROM {quote_ident(name)}"))
    except (apsw.Error, CipherStoreError) as e:
        raise TableDumpError(name, e) from e
    return GenericTable(name, rows)


def dump_tables(store) -> DumpResult:
    """Materialize every user table of an opened store as text rows."""
    names = list_tables(store)
    _LOGGER.info(f"Found {len(names)} tables: {', '.join(names)}")

    tables, failed = [], []
    for name in names:
        try:
            table = dump_table(store, name)
        except TableDumpError as e:
            _LOGGER.error(str(e))
            failed.append(name)
            continue
        _LOGGER.info(f"Table '{name}': {len(table.rows)} rows")
        tables.append(table)
    return DumpResult(tables, failed)


# ==========================================
# REBUILD
# ==========================================
def _row_values(row: GenericRow, columns: List[str]) -> tuple:
    values = dict(row)
    return tuple(values.get(col) for col in columns)


def _create_table(cursor, table: GenericTable):
    columns = table.columns
    column_defs = ", ".join(f"{quote_ident(col)} TEXT" for col in columns)
    cursor.execute(f"CREATE TABLE {quote_ident(table.name)} ({column_defs})")
    placeholders = ", ".join("?" for _ in columns)
    column_list = ", ".join(quote_ident(col) for col in columns)
    cursor.executemany(
        f"INSERT INTO {quote_ident(table.name)} ({column_list}) VALUES ({placeholders})",
        (_row_values(row, columns) for row in table.rows),
    )


def rebuild_catalog(tables: Iterable[GenericTable], output_path: Union[str, Path]) -> RebuildResult:
    output_path = Path(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.unlink(missing_ok=True)
    except OSError as e:
        raise OutputError(f"Cannot prepare output database {output_path}: {e}") from e

    created, empty, failed = [], [], []
    try:
        db = apsw.Connection(str(output_path))
    except apsw.Error as e:
        raise OutputError(f"Cannot create output database {output_path}: {e}") from e
    try:
        cursor = db.cursor()
        with db:
            for table in tables:
                if not table.rows:
                    _LOGGER.warning(f"Table '{table.name}' is empty, skipping")
                    empty.append(table.name)
                    continue
                try:
                    # Nested savepoint, a failing table leaves no partial rows behind.
                    with db:
                        _create_table(cursor, table)
                except apsw.Error as e:
                    _LOGGER.error(f"Failed to create table '{table.name}': {e}")
                    failed.append(table.name)
                    continue
                _LOGGER.info(f"Table '{table.name}': inserted {len(table.rows)} rows")
                created.append(table.name)
    except apsw.Error as e:
        raise OutputError(f"Cannot write output database {output_path}: {e}") from e
    finally:
        db.close()

    _LOGGER.info(f"Created {output_path} with {len(created)} tables")
    return RebuildResult(created, empty, failed)


def validate_catalog(path: Union[str, Path]) -> int:
    """Reopen a rebuilt catalog and return its user table count."""
    with PlainStore(path) as store:
        return len(list_tables(store))
