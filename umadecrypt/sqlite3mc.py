import ctypes
from functools import cache
from typing import Iterator, Optional
from ctypes import c_char_p, c_int, c_void_p, POINTER

from .config import resolve_lib_path
from .errors import StoreOpenError, StoreKeyError, StoreQueryError
from .log import get_logger

_LOGGER = get_logger(__name__)

# ==========================================
# DECRYPTION (SQLite3MC)
# ==========================================
SQLITE_OK = 0
SQLITE_ROW = 100
SQLITE_DONE = 101
SQLITE_OPEN_READWRITE = 0x00000002
SQLITE_OPEN_CREATE = 0x00000004

PROBE_SQL = "SELECT name FROM sqlite_master LIMIT 1;"


class SQLite3MC:
    def __init__(self, dll_path: str):
        self.lib = ctypes.CDLL(dll_path)
        self.sqlite3_open_v2 = self.lib.sqlite3_open_v2
        self.sqlite3_open_v2.argtypes = [c_char_p, POINTER(c_void_p), c_int, c_void_p]
        self.sqlite3_open_v2.restype = c_int
        self.sqlite3_close = self.lib.sqlite3_close
        self.sqlite3_close.argtypes = [c_void_p]
        self.sqlite3_close.restype = c_int
        self.sqlite3_errmsg = self.lib.sqlite3_errmsg
        self.sqlite3_errmsg.argtypes = [c_void_p]
        self.sqlite3_errmsg.restype = c_char_p
        self.sqlite3_exec = self.lib.sqlite3_exec
        self.sqlite3_exec.argtypes = [c_void_p, c_char_p, c_void_p, c_void_p, POINTER(c_void_p)]
        self.sqlite3_exec.restype = c_int
        self.sqlite3_free = self.lib.sqlite3_free
        self.sqlite3_free.argtypes = [c_void_p]
        self.sqlite3_free.restype = None
        self.sqlite3mc_config = self.lib.sqlite3mc_config
        self.sqlite3mc_config.argtypes = [c_void_p, c_char_p, c_int]
        self.sqlite3mc_config.restype = c_int
        self.sqlite3_key = self.lib.sqlite3_key
        self.sqlite3_key.argtypes = [c_void_p, c_void_p, c_int]
        self.sqlite3_key.restype = c_int
        self.sqlite3_prepare_v2 = self.lib.sqlite3_prepare_v2
        self.sqlite3_prepare_v2.argtypes = [c_void_p, c_char_p, c_int, POINTER(c_void_p), c_void_p]
        self.sqlite3_prepare_v2.restype = c_int
        self.sqlite3_step = self.lib.sqlite3_step
        self.sqlite3_step.argtypes = [c_void_p]
        self.sqlite3_step.restype = c_int
        self.sqlite3_finalize = self.lib.sqlite3_finalize
        self.sqlite3_finalize.argtypes = [c_void_p]
        self.sqlite3_finalize.restype = c_int
        self.sqlite3_column_count = self.lib.sqlite3_column_count
        self.sqlite3_column_count.argtypes = [c_void_p]
        self.sqlite3_column_count.restype = c_int
        self.sqlite3_column_name = self.lib.sqlite3_column_name
        self.sqlite3_column_name.argtypes = [c_void_p, c_int]
        self.sqlite3_column_name.restype = c_char_p
        self.sqlite3_column_text = self.lib.sqlite3_column_text
        self.sqlite3_column_text.argtypes = [c_void_p, c_int]
        self.sqlite3_column_text.restype = c_void_p
        self.sqlite3_column_bytes = self.lib.sqlite3_column_bytes
        self.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
        self.sqlite3_column_bytes.restype = c_int

    def errmsg(self, db: c_void_p) -> str:
        p = self.sqlite3_errmsg(db)
        return p.decode("utf-8", errors="replace") if p else ""

    def open(self, path: str) -> c_void_p:
        db = c_void_p()
        rc = self.sqlite3_open_v2(path.encode("utf-8"), ctypes.byref(db), SQLITE_OPEN_READWRITE | SQLITE_OPEN_CREATE, None)
        if rc != SQLITE_OK or not db:
            msg = self.errmsg(db) if db else "(no db handle)"
            if db:
                self.sqlite3_close(db)
            raise StoreOpenError(f"sqlite3_open_v2('{path}') failed rc={rc} errmsg={msg}", rc)
        return db

    def close(self, db: c_void_p):
        if db:
            self.sqlite3_close(db)

    def mc_config(self, db: c_void_p, name: str, val: int) -> int:
        return self.sqlite3mc_config(db, name.encode("utf-8"), val)

    def key(self, db: c_void_p, key_bytes: bytes) -> int:
        buf = ctypes.create_string_buffer(key_bytes, len(key_bytes))
        return self.sqlite3_key(db, ctypes.cast(buf, c_void_p), len(key_bytes))

    def exec(self, db: c_void_p, sql: str) -> tuple:
        err = c_void_p()
        rc = self.sqlite3_exec(db, sql.encode("utf-8"), None, None, ctypes.byref(err))
        msg = None
        if err.value:
            msg = ctypes.string_at(err.value).decode("utf-8", errors="replace")
            self.sqlite3_free(err)
        return rc, msg

    def prepare(self, db: c_void_p, sql: str) -> c_void_p:
        stmt = c_void_p()
        rc = self.sqlite3_prepare_v2(db, sql.encode("utf-8"), -1, ctypes.byref(stmt), None)
        if rc != SQLITE_OK:
            raise StoreQueryError(f"prepare failed rc={rc} errmsg={self.errmsg(db)} sql={sql}", rc)
        return stmt

    def column_name(self, stmt: c_void_p, col: int) -> Optional[str]:
        p = self.sqlite3_column_name(stmt, col)
        return p.decode("utf-8", errors="replace") if p else None

    def column_text(self, stmt: c_void_p, col: int) -> Optional[str]:
        p = self.sqlite3_column_text(stmt, col)
        if not p:
            return None
        # column_bytes must be read after column_text so it reports the text length.
        n = self.sqlite3_column_bytes(stmt, col)
        return ctypes.string_at(p, n).decode("utf-8", errors="replace")


@cache
def load_api(dll_path: Optional[str] = None) -> SQLite3MC:
    path = resolve_lib_path(dll_path)
    try:
        return SQLite3MC(path)
    except OSError as e:
        raise StoreOpenError(f"Cannot load sqlite3mc library {path}: {e}") from e


class CipherStore:
    """An open sqlite3mc database handle exposing rows as ordered (column, text) pairs."""

    def __init__(self, path, api: Optional[SQLite3MC] = None):
        self.path = str(path)
        self.api = api or load_api()
        self.db = self.api.open(self.path)

    def set_cipher_mode(self, cipher_id: int, param: str = "cipher") -> int:
        rc = self.api.mc_config(self.db, param, cipher_id)
        _LOGGER.debug(f"sqlite3mc_config({param}, {cipher_id}) returned {rc}")
        return rc

    def set_key(self, key_bytes: bytes):
        rc = self.api.key(self.db, key_bytes)
        if rc != SQLITE_OK:
            raise StoreKeyError(f"sqlite3_key returned rc={rc}, errmsg={self.api.errmsg(self.db)}", rc)

    def exec(self, sql: str):
        rc, msg = self.api.exec(self.db, sql)
        if rc != SQLITE_OK:
            raise StoreQueryError(f"exec failed rc={rc} errmsg={msg or self.api.errmsg(self.db)}", rc)

    def probe(self):
        self.exec(PROBE_SQL)

    def rows(self, sql: str) -> Iterator[tuple]:
        api = self.api
        stmt = api.prepare(self.db, sql)
        try:
            names = None
            while True:
                rc = api.sqlite3_step(stmt)
                if rc == SQLITE_DONE:
                    break
                if rc != SQLITE_ROW:
                    raise StoreQueryError(f"step failed rc={rc} errmsg={api.errmsg(self.db)}", rc)
                if names is None:
                    count = api.sqlite3_column_count(stmt)
                    names = [api.column_name(stmt, i) or f"column_{i}" for i in range(count)]
                yield tuple((name, api.column_text(stmt, i)) for i, name in enumerate(names))
        finally:
            api.sqlite3_finalize(stmt)

    def close(self):
        if self.db:
            self.api.close(self.db)
            self.db = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def open_cipher_store(path, dll_path: Optional[str] = None) -> CipherStore:
    return CipherStore(path, load_api(dll_path))
