"""
Metadata catalog access.

The catalog is an SQLite database whose table ``a`` maps each asset bundle to
its decryption key. Shipped catalogs are encrypted with sqlite3mc; catalogs
rebuilt by this package are plain. CatalogReader figures out which one it was
given and streams MetadataRecords from either.
"""
import re
from pathlib import Path
from typing import Callable, Iterable, Iterator, NamedTuple, Optional, Union

import apsw

from .config import DEFAULT_CIPHER_INDEX, META_TABLE, resolve_db_key, parse_hex_key
from .errors import CatalogDetectionError, CipherStoreError, KeyResolutionError
from .log import get_logger
from .sqlite3mc import open_cipher_store
from .store import PlainStore, quote_ident

_LOGGER = get_logger(__name__)

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
# ASCII digits with an optional sign, no digit separators
KEY_PATTERN = re.compile(r"[+-]?[0-9]+")


class MetadataRecord(NamedTuple):
    type: str
    name: str
    path_key: str
    checksum: Optional[str]
    dependencies: str
    key: Optional[str]

    def __str__(self) -> str:
        return f"[{self.type}] {self.name} -> {self.path_key}"


REQUIRED_COLUMNS = ("h", "e")


def record_from_row(row) -> MetadataRecord:
    values = dict(row)
    return MetadataRecord(
        type=values.get("m") or "",
        name=values.get("n") or "",
        path_key=values.get("h") or "",
        checksum=values.get("c"),
        dependencies=values.get("d") or "",
        key=values.get("e"),
    )


class CatalogReader:
    def __init__(
        self,
        path: Union[str, Path],
        hex_key: Optional[str] = None,
        cipher_id: int = DEFAULT_CIPHER_INDEX,
        cipher_store_factory: Optional[Callable] = None,
    ):
        self.path = Path(path)
        # Resolve the key up front so a malformed key fails before any I/O.
        self.key_bytes = parse_hex_key(hex_key) if hex_key else resolve_db_key()
        self.cipher_id = cipher_id
        self.cipher_store_factory = cipher_store_factory or open_cipher_store
        self.is_encrypted = None

    def open(self):
        """Open the catalog, returning a store with a ``rows(sql)`` method."""
        try:
            store = PlainStore(self.path)
        except apsw.Error as e:
            plain_error = e
        else:
            try:
                store.probe()
            except apsw.Error as e:
                store.close()
                plain_error = e
            else:
                _LOGGER.info(f"Catalog {self.path} is a plain database")
                self.is_encrypted = False
                return store

        _LOGGER.info(f"Catalog {self.path} is not plain ({plain_error}), trying cipher mode {self.cipher_id}")
        store = None
        try:
            store = self.cipher_store_factory(self.path)
            store.set_cipher_mode(self.cipher_id)
            store.set_key(self.key_bytes)
            store.probe()
        except CipherStoreError as e:
            if store is not None:
                store.close()
            raise CatalogDetectionError(self.path, plain_error, e) from e

        _LOGGER.info(f"Opened encrypted catalog {self.path}")
        self.is_encrypted = True
        return store

    def records(self) -> Iterator[MetadataRecord]:
        store = self.open()
        try:
            yield from read_records(store)
        finally:
            store.close()


def _catalog_rows(store):
    try:
        yield from store.rows(f"SELECT * FROM {quote_ident(META_TABLE)}")
    except (apsw.Error, CipherStoreError) as e:
        raise KeyResolutionError(f"Cannot read catalog table '{META_TABLE}': {e}") from e


def read_records(store) -> Iterator[MetadataRecord]:
    checked = False
    for row in _catalog_rows(store):
        if not checked:
            columns = {name for name, _ in row}
            missing = [c for c in REQUIRED_COLUMNS if c not in columns]
            if missing:
                raise KeyResolutionError(f"Catalog table '{META_TABLE}' lacks column(s) {', '.join(missing)}")
            checked = True

        record = record_from_row(row)
        if not record.type:
            _LOGGER.warning(f"Skipping row: empty type string (m) for {record.name or record.path_key}")
            continue
        if not record.name:
            _LOGGER.warning(f"Skipping row: empty name string (n) for {record.path_key}")
            continue
        if not record.path_key:
            _LOGGER.warning(f"Skipping row: empty path key (h) for {record.name}")
            continue
        yield record


# ==========================================
# KEY INDEX
# ==========================================
class Found(NamedTuple):
    key: int


class NotFound(NamedTuple):
    name: str


class KeyIndex:
    """Case-insensitive file identifier -> bundle key mapping. Read-only once built."""

    def __init__(self):
        self._keys = {}
        self.duplicates = 0
        self.invalid = 0

    def lookup(self, name: str) -> Union[Found, NotFound]:
        key = self._keys.get(name.lower())
        if key is None:
            return NotFound(name)
        return Found(key)

    def __contains__(self, name) -> bool:
        return name.lower() in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __eq__(self, other) -> bool:
        if not isinstance(other, KeyIndex):
            return NotImplemented
        return self._keys == other._keys

    def items(self):
        return self._keys.items()

    @property
    def warnings(self) -> int:
        return self.duplicates + self.invalid


def parse_key(text: Optional[str]) -> Optional[int]:
    if text is None or not KEY_PATTERN.fullmatch(text.strip()):
        return None
    key = int(text.strip())
    if not INT64_MIN <= key <= INT64_MAX:
        return None
    return key


def build_key_index(records: Iterable[MetadataRecord]) -> KeyIndex:
    index = KeyIndex()
    keys = index._keys
    for record in records:
        key = parse_key(record.key)
        if key is None:
            _LOGGER.warning(f"Failed to parse key for file {record.path_key}: {record.key!r}")
            index.invalid += 1
            continue
        ident = record.path_key.lower()
        if ident in keys:
            _LOGGER.warning(f"Duplicate catalog entry for {record.path_key}, keeping the first one")
            index.duplicates += 1
            continue
        keys[ident] = key
    _LOGGER.info(f"Key index built: {len(index)} entries, {index.duplicates} duplicates, {index.invalid} invalid keys")
    return index


def load_key_index(path: Union[str, Path], hex_key: Optional[str] = None, **kwargs) -> KeyIndex:
    return build_key_index(CatalogReader(path, hex_key, **kwargs).records())
