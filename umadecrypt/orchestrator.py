import os
from datetime import datetime
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

from .catalog import CatalogReader, build_key_index
from .config import DAT_DIR, DEFAULT_CIPHER_INDEX, DEFAULT_OUTPUT_DIR, MASTER_DIR, META_FILE, parse_hex_key
from .errors import OutputError, PreconditionError
from .log import get_logger
from .pipeline import DecryptionPipeline, PipelineResult
from .tables import RebuildResult, dump_tables, rebuild_catalog, validate_catalog
from .treecopy import COPIED, FAILED, SKIPPED, copy_tree, count_outcomes

_LOGGER = get_logger(__name__)


class CatalogResult(NamedTuple):
    path: Path
    encrypted: bool
    dump_failed: List[str]
    rebuild: RebuildResult

    @property
    def failed(self) -> int:
        return len(self.dump_failed) + len(self.rebuild.failed)


class RunReport(NamedTuple):
    catalog: Optional[CatalogResult] = None
    copy: Optional[dict] = None
    pipeline: Optional[PipelineResult] = None

    @property
    def failed(self) -> int:
        failed = 0
        if self.catalog:
            failed += self.catalog.failed
        if self.copy:
            failed += self.copy[FAILED]
        if self.pipeline:
            failed += self.pipeline.failed
        return failed

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


# ==========================================
# VALIDATION
# ==========================================
def require_dir(path: Path, what: str):
    if not path.is_dir():
        raise PreconditionError(f"{what} does not exist: {path}")


def require_meta(path: Path):
    if not path.is_file():
        raise PreconditionError(f"Meta database file does not exist: {path}")
    if path.stat().st_size == 0:
        raise PreconditionError(f"Meta database file is empty: {path}")


def make_output_dir(path: Path):
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputError(f"Cannot create output directory {path}: {e}") from e


def validate_game_dir(input_dir: Path):
    require_dir(input_dir, "Input directory")
    require_meta(input_dir.joinpath(META_FILE))
    for folder in (MASTER_DIR, DAT_DIR):
        if not input_dir.joinpath(folder).is_dir():
            _LOGGER.warning(f"Folder missing: {folder}")


# ==========================================
# STEPS
# ==========================================
def decrypt_db(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    hex_key: Optional[str] = None,
    cipher_id: int = DEFAULT_CIPHER_INDEX,
    cipher_store_factory=None,
) -> CatalogResult:
    """Dump every table of a catalog (encrypted or not) into a fresh plain database."""
    input_path, output_path = Path(input_path), Path(output_path)
    require_meta(input_path)
    reader = CatalogReader(input_path, hex_key, cipher_id, cipher_store_factory)
    store = reader.open()
    try:
        dump = dump_tables(store)
    finally:
        store.close()
    print(f"Read {len(dump.tables)} tables from {input_path}", flush=True)

    rebuild = rebuild_catalog(dump.tables, output_path)
    table_count = validate_catalog(output_path)
    print(f"Decrypted database created at: {output_path} ({table_count} tables)", flush=True)
    return CatalogResult(output_path, reader.is_encrypted, dump.failed, rebuild)


def decrypt_dat(
    input_dir: Union[str, Path],
    output_dir: Union[str, Path],
    meta_path: Union[str, Path],
    hex_key: Optional[str] = None,
    max_workers: Optional[int] = None,
    cipher_store_factory=None,
    pipeline: Optional[DecryptionPipeline] = None,
) -> PipelineResult:
    input_dir, output_dir, meta_path = Path(input_dir), Path(output_dir), Path(meta_path)
    require_dir(input_dir, "Input directory")
    require_meta(meta_path)
    reader = CatalogReader(meta_path, hex_key, cipher_store_factory=cipher_store_factory)

    key_index = build_key_index(reader.records())
    print(f"Loaded {len(key_index)} file-key mappings from {meta_path}", flush=True)

    make_output_dir(output_dir)
    pipeline = pipeline or DecryptionPipeline()
    return pipeline.run(input_dir, output_dir, key_index, max_workers)


def copy_master(src: Path, dst: Path, skip_existing: bool) -> dict:
    if not src.is_dir():
        _LOGGER.warning(f"Master folder not found: {src}")
        return count_outcomes([])
    counts = count_outcomes(copy_tree(src, dst, skip_existing))
    print(f"Master folder: {counts[COPIED]} files copied, {counts[SKIPPED]} skipped, {counts[FAILED]} failed", flush=True)
    return counts


def process_game_dir(
    input_dir: Union[str, Path],
    output_dir: Union[str, Path, None] = None,
    hex_key: Optional[str] = None,
    max_workers: Optional[int] = None,
    overwrite: bool = False,
    rebuild: bool = True,
    cipher_store_factory=None,
    pipeline: Optional[DecryptionPipeline] = None,
) -> RunReport:
    """
    Mirror a game data directory (meta + master/ + dat/) into plaintext.

    Steps run in order and a fatal error stops the run: the catalog is
    decrypted to ``<output>/meta``, ``master/`` is copied as is and ``dat/``
    is decrypted with keys from the catalog. Per-table and per-file failures
    only show up in the returned report.
    """
    input_dir = Path(input_dir)
    validate_game_dir(input_dir)
    if hex_key:
        parse_hex_key(hex_key)
    output_dir = Path(output_dir) if output_dir else input_dir.joinpath(DEFAULT_OUTPUT_DIR)
    make_output_dir(output_dir)
    print(f"Output path: {output_dir}", flush=True)

    meta_path = input_dir.joinpath(META_FILE)
    catalog = None
    print("Step 1: Decrypting meta database...", flush=True)
    if rebuild:
        catalog = decrypt_db(meta_path, output_dir.joinpath(META_FILE), hex_key, cipher_store_factory=cipher_store_factory)
        key_source = catalog.path
    else:
        key_source = meta_path
    reader = CatalogReader(key_source, hex_key, cipher_store_factory=cipher_store_factory)
    key_index = build_key_index(reader.records())
    print(f"Loaded {len(key_index)} file-key mappings", flush=True)

    print("Step 2: Copying master folder...", flush=True)
    copied = copy_master(input_dir.joinpath(MASTER_DIR), output_dir.joinpath(MASTER_DIR), not overwrite)

    print("Step 3: Decrypting dat folder...", flush=True)
    dat_dir = input_dir.joinpath(DAT_DIR)
    result = None
    if dat_dir.is_dir():
        pipeline = pipeline or DecryptionPipeline()
        result = pipeline.run(dat_dir, output_dir.joinpath(DAT_DIR), key_index, max_workers)
    else:
        _LOGGER.warning(f"Dat folder not found: {dat_dir}")

    return RunReport(catalog, copied, result)


# ==========================================
# INFO
# ==========================================
def folder_stats(path: Path) -> tuple:
    count = size = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                size += Path(root, name).stat().st_size
            except OSError as e:
                _LOGGER.debug(f"Cannot stat {name}: {e}")
                continue
            count += 1
    return count, size


def describe_game_dir(input_dir: Union[str, Path]):
    input_dir = Path(input_dir)
    require_dir(input_dir, "Input directory")
    print("=== Game Directory Information ===")
    meta_path = input_dir.joinpath(META_FILE)
    if meta_path.is_file():
        st = meta_path.stat()
        modified = datetime.fromtimestamp(st.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
        print(f"Meta database file: {st.st_size:,} bytes ({st.st_size / (1024 * 1024):.2f} MB), last modified {modified}")
    else:
        _LOGGER.warning(f"Meta file not found: {meta_path}")

    for label, folder in (("Master", MASTER_DIR), ("Dat", DAT_DIR)):
        path = input_dir.joinpath(folder)
        if not path.is_dir():
            _LOGGER.warning(f"{label} folder not found: {path}")
            continue
        count, size = folder_stats(path)
        print(f"{label}: {count} files, {size:,} bytes")
