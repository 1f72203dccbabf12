import os
from pathlib import Path
from typing import Optional

import apsw

from .errors import KeyResolutionError

# ==========================================
# CONSTANTS & CONFIG
# ==========================================
IS_WIN = os.name == "nt"
LIB_NAME = "sqlite3mc_x64.dll" if IS_WIN else "libsqlite3mc.so"

ENV_GAME_ROOT = "UMA_DATA_DIR"
ENV_LIB_PATH = "UMA_SQLITE3MC_LIB"
ENV_DB_KEY = "UMA_DB_KEY"

# Catalog cipher: sqlite3mc cipher index 3 (SQLCipher) with a 32 byte raw key.
DEFAULT_DB_KEY = "9c2bab97bcf8c0c4f1a9ea7881a213f6c9ebf9d8d4c6a8e43ce5a259bde7e9fd"
DEFAULT_CIPHER_INDEX = 3

META_FILE = "meta"
META_TABLE = "a"
MASTER_DIR = "master"
DAT_DIR = "dat"
DEFAULT_OUTPUT_DIR = "decrypted"

PROGRESS_INTERVAL = 2.0

DB_OPEN_MODE = apsw.SQLITE_OPEN_URI | apsw.SQLITE_OPEN_READONLY


def default_game_root() -> Path:
    env_root = os.environ.get(ENV_GAME_ROOT)
    if env_root:
        return Path(env_root)
    if not IS_WIN:
        return Path(".").resolve()

    import winreg
    try:
        key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, r"SOFTWARE\WOW6432Node\Valve\Steam")
        steam_path = winreg.QueryValueEx(key, "InstallPath")[0]
        winreg.CloseKey(key)
        steam_game_path = Path(steam_path, "steamapps", "common", "UmamusumePrettyDerby_Jpn", "UmamusumePrettyDerby_Jpn_Data", "Persistent")
        if steam_game_path.exists():
            return steam_game_path
    except OSError:
        pass
    return Path(os.environ["LOCALAPPDATA"], "..", "LocalLow", "Cygames", "umamusume").resolve()


def resolve_lib_path(explicit: Optional[str] = None) -> str:
    """Locate the sqlite3mc shared library: explicit path, env override, then package dir."""
    if explicit:
        return str(explicit)
    env_path = os.environ.get(ENV_LIB_PATH)
    if env_path:
        return env_path
    bundled = Path(__file__).parent.resolve().joinpath(LIB_NAME)
    if bundled.exists():
        return str(bundled)
    # Let the loader search the usual library paths.
    return LIB_NAME


def parse_hex_key(hex_str: str) -> bytes:
    """Decode a hex key, tolerating a 0x prefix and space/hyphen separators."""
    if hex_str is None:
        raise KeyResolutionError("Hex key is missing")
    cleaned = hex_str.strip()
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    cleaned = cleaned.replace(" ", "").replace("-", "")
    if not cleaned:
        raise KeyResolutionError("Hex key is empty")
    if len(cleaned) % 2 != 0:
        raise KeyResolutionError(f"Hex key length must be even, got {len(cleaned)} digits")
    try:
        return bytes.fromhex(cleaned)
    except ValueError as e:
        raise KeyResolutionError(f"Hex key contains non-hex characters: {e}") from e


def resolve_db_key(hex_str: Optional[str] = None) -> bytes:
    if hex_str:
        return parse_hex_key(hex_str)
    return parse_hex_key(os.environ.get(ENV_DB_KEY) or DEFAULT_DB_KEY)


def default_workers() -> int:
    return os.cpu_count() or 1


def clamp_workers(requested: Optional[int] = None) -> int:
    cpus = default_workers()
    if requested is None:
        requested = cpus
    return max(1, min(requested, cpus * 2))
