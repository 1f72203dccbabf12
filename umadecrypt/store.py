from pathlib import Path
from typing import Iterator, List, Union

import apsw

from .config import DB_OPEN_MODE

PROBE_SQL = "SELECT name FROM sqlite_master LIMIT 1"


def as_text(value) -> Union[str, None]:
    """Coerce a column value to text, undecodable bytes become U+FFFD."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class PlainStore:
    """Read-only apsw connection with the same row interface as CipherStore."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.connection = apsw.Connection(self.path.resolve().as_uri(), DB_OPEN_MODE)

    def probe(self):
        self.connection.cursor().execute(PROBE_SQL).fetchall()

    def column_names(self, sql: str) -> List[str]:
        cursor = self.connection.cursor()
        try:
            cursor.execute(sql)
            return [d[0] for d in cursor.getdescription()]
        except apsw.ExecutionCompleteError:
            # no rows
            return []
        finally:
            cursor.close()

    def rows(self, sql: str) -> Iterator[tuple]:
        names = self.column_names(sql)
        if not names:
            return
        # Values arrive as the bytes sqlite3_column_text would return.
        projection = ", ".join(f"CAST({quote_ident(name)} AS BLOB)" for name in names)
        cursor = self.connection.cursor()
        for row in cursor.execute(f"SELECT {projection} FROM ({sql})"):
            yield tuple((name, as_text(value)) for name, value in zip(names, row))

    def close(self):
        self.connection.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
