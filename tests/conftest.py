import os
from pathlib import Path

import apsw
import pytest

from umadecrypt.bundle import encrypt_bytes
from umadecrypt.errors import StoreQueryError
from umadecrypt.store import PlainStore

CATALOG_COLUMNS = ("m", "n", "h", "c", "d", "e")

SAMPLE_ROWS = [
    ("dat", "bundle/a", "a.bin", "c1", "", "1001"),
    ("dat", "bundle/b", "B.BIN", None, "bundle/a", "2002"),
    ("dat", "bundle/neg", "neg.bin", "c3", "", "-7"),
]


def make_catalog(path: Path, rows, table="a", columns=CATALOG_COLUMNS, extra_tables=None) -> Path:
    db = apsw.Connection(str(path))
    cur = db.cursor()
    cur.execute(f"CREATE TABLE {table} ({', '.join(columns)})")
    placeholders = ", ".join("?" for _ in columns)
    cur.executemany(f"INSERT INTO {table} VALUES ({placeholders})", rows)
    for name, (cols, trows) in (extra_tables or {}).items():
        cur.execute(f"CREATE TABLE {name} ({', '.join(cols)})")
        if trows:
            cur.executemany(f"INSERT INTO {name} VALUES ({', '.join('?' for _ in cols)})", trows)
    db.close()
    return path


def write_opaque(path: Path, size=4096) -> Path:
    """Write bytes no SQLite engine will accept as a plain database."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x8f" * 16 + os.urandom(size - 16))
    return path


def write_bundle(path: Path, plain: bytes, key: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encrypt_bytes(plain, key))
    return path


class FakeCipherStore(PlainStore):
    """Stands in for an sqlite3mc handle: reads a plain backing database once keyed correctly."""

    def __init__(self, backing: Path, expected_key: bytes):
        super().__init__(backing)
        self.expected_key = expected_key
        self.cipher_id = None
        self.key = None

    def set_cipher_mode(self, cipher_id: int, param: str = "cipher") -> int:
        self.cipher_id = cipher_id
        return 0

    def set_key(self, key_bytes: bytes):
        self.key = key_bytes

    def probe(self):
        if self.key != self.expected_key:
            raise StoreQueryError("exec failed rc=26 errmsg=file is not a database", 26)
        super().probe()


@pytest.fixture
def cipher_factory():
    opened = []

    def build(backing: Path, expected_key: bytes):
        def factory(path):
            store = FakeCipherStore(backing, expected_key)
            opened.append(store)
            return store
        return factory

    build.opened = opened
    return build


@pytest.fixture
def sample_catalog(tmp_path: Path) -> Path:
    return make_catalog(tmp_path / "meta.sqlite", SAMPLE_ROWS)
