import sys
import argparse
import faulthandler
from pathlib import Path

from .config import DEFAULT_CIPHER_INDEX, default_game_root
from .errors import UmaDecryptError
from .log import get_logger, log_setup
from .orchestrator import decrypt_dat, decrypt_db, describe_game_dir, process_game_dir

_LOGGER = get_logger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = -1


class Args(argparse.ArgumentParser):
    def __init__(self, desc, **kwargs) -> None:
        super().__init__(description=desc, **kwargs)
        sub = self.add_subparsers(dest="command", required=True, parser_class=argparse.ArgumentParser)

        uma = sub.add_parser("uma-dir", help="Decrypt a game data directory (meta, master, dat)")
        uma.add_argument("-i", "--input", type=Path, default=None, help="Game data directory (default: $UMA_DATA_DIR)")
        uma.add_argument("-o", "--output", type=Path, default=None, help="Output directory (default: <input>/decrypted)")
        uma.add_argument("-k", "--key", help="Catalog key as hex string")
        uma.add_argument("-t", "--threads", type=int, default=None, help="Parallel workers (default: CPU count)")
        uma.add_argument("--info", action="store_true", help="Only show directory information")
        uma.add_argument("--overwrite", action="store_true", help="Overwrite existing files in master/")
        uma.add_argument("--no-rebuild", dest="rebuild", action="store_false", help="Read keys from the source catalog instead of a rebuilt copy")

        db = sub.add_parser("decrypt-db", help="Decrypt a single catalog database")
        db.add_argument("-i", "--input", type=Path, required=True, help="Encrypted database file")
        db.add_argument("-o", "--output", type=Path, required=True, help="Decrypted database file")
        db.add_argument("-k", "--key", help="Catalog key as hex string (default: built-in key)")
        db.add_argument("-c", "--cipher", type=int, default=DEFAULT_CIPHER_INDEX, help="sqlite3mc cipher index")

        dat = sub.add_parser("decrypt-dat", help="Decrypt every file of a directory tree")
        dat.add_argument("-i", "--input", type=Path, required=True, help="Directory of encrypted files")
        dat.add_argument("-o", "--output", type=Path, required=True, help="Output directory, mirrors the input layout")
        dat.add_argument("-m", "--meta", type=Path, required=True, help="Catalog database with file keys")
        dat.add_argument("-k", "--key", help="Catalog key as hex string")
        dat.add_argument("-t", "--threads", type=int, default=None, help="Parallel workers (default: CPU count)")

        for p in (uma, db, dat):
            p.add_argument("-v", "--verbose", action="store_true")
            p.add_argument("-dbg", "--debug", action="store_true")

    def parse_args(self, *args, **kwargs):
        a = super().parse_args(*args, **kwargs)
        log_setup(a)
        return a


def run(args) -> int:
    if args.command == "uma-dir":
        input_dir = args.input or default_game_root()
        if args.info:
            describe_game_dir(input_dir)
            return EXIT_OK
        report = process_game_dir(input_dir, args.output, args.key, args.threads, args.overwrite, args.rebuild)
        return report.exit_code

    if args.command == "decrypt-db":
        result = decrypt_db(args.input, args.output, args.key, args.cipher)
        return EXIT_PARTIAL if result.failed else EXIT_OK

    result = decrypt_dat(args.input, args.output, args.meta, args.key, args.threads)
    return EXIT_OK if result.ok else EXIT_PARTIAL


def main(argv=None) -> int:
    if not faulthandler.is_enabled():
        faulthandler.enable()
    args = Args("Decrypt game asset catalogs and bundles").parse_args(argv)
    try:
        code = run(args)
    except UmaDecryptError as e:
        _LOGGER.error(str(e))
        return EXIT_FATAL
    if code == EXIT_PARTIAL:
        print("Completed with failures, see log above.", flush=True)
    return code


if __name__ == "__main__":
    sys.exit(main())
