"""
Bulk decryption of an asset tree.

Every file under the input directory is looked up in the KeyIndex by base
name and decrypted into the same relative path under the output directory.
Files are independent, so they are handed to a bounded thread pool; a file
that fails (no key, cipher or I/O error) is counted and the batch goes on.
There is no cancellation and no per-file timeout.
"""
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Union

from .bundle import decrypt_file_to_file
from .catalog import Found, KeyIndex
from .config import PROGRESS_INTERVAL, clamp_workers
from .log import get_logger

_LOGGER = get_logger(__name__)

# Successful files logged individually at INFO before switching to DEBUG.
SHOW_FIRST = 5


class FileTask(NamedTuple):
    input_path: Path
    relative_path: str
    key: int


class FileFailure(NamedTuple):
    relative_path: str
    reason: str
    error: Optional[Exception] = None


class StatsSnapshot(NamedTuple):
    processed: int
    succeeded: int
    failed: int


class PipelineResult(NamedTuple):
    processed: int
    succeeded: int
    failed: int
    total: int
    failures: List[FileFailure]

    @property
    def ok(self) -> bool:
        return self.failed == 0


class PipelineStats:
    def __init__(self):
        self.lock = threading.Lock()
        self.processed = 0
        self.succeeded = 0
        self.failed = 0

    def record(self, success: bool) -> int:
        with self.lock:
            self.processed += 1
            if success:
                self.succeeded += 1
            else:
                self.failed += 1
            return self.succeeded

    def snapshot(self) -> StatsSnapshot:
        with self.lock:
            return StatsSnapshot(self.processed, self.succeeded, self.failed)


def print_progress(snapshot: StatsSnapshot, total: int):
    print(f"Progress: {snapshot.processed}/{total} files processed "
          f"(ok {snapshot.succeeded}, failed {snapshot.failed})", flush=True)


class ProgressReporter(threading.Thread):
    """Samples the stats on a fixed interval until every file is processed."""

    def __init__(self, stats: PipelineStats, total: int, interval: float = PROGRESS_INTERVAL, emit: Callable = print_progress):
        super().__init__(name="progress", daemon=True)
        self.stats = stats
        self.total = total
        self.interval = interval
        self.emit = emit
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(self.interval):
            snapshot = self.stats.snapshot()
            if snapshot.processed >= self.total:
                break
            self.emit(snapshot, self.total)

    def stop(self):
        self._stop_event.set()
        self.join()


def discover_files(input_dir: Union[str, Path]) -> List[Path]:
    files = []
    for root, _, names in os.walk(input_dir):
        files.extend(Path(root, name) for name in names)
    return files


class DecryptionPipeline:
    def __init__(
        self,
        decrypt: Callable = decrypt_file_to_file,
        progress_interval: float = PROGRESS_INTERVAL,
        report: Callable = print_progress,
    ):
        self.decrypt = decrypt
        self.progress_interval = progress_interval
        self.report = report

    def run(
        self,
        input_dir: Union[str, Path],
        output_dir: Union[str, Path],
        key_index: KeyIndex,
        max_workers: Optional[int] = None,
    ) -> PipelineResult:
        input_dir, output_dir = Path(input_dir), Path(output_dir)
        files = discover_files(input_dir)
        total = len(files)
        _LOGGER.info(f"Found {total} files to process in {input_dir}")
        if not files:
            _LOGGER.warning(f"No files found in input directory: {input_dir}")
            return PipelineResult(0, 0, 0, 0, [])

        workers = clamp_workers(max_workers)
        print(f"Decrypting {total} files with {workers} workers...", flush=True)

        stats = PipelineStats()
        failures = []
        created_dirs = set()

        def ensure_dir(path: Path):
            # Shares the stats lock with the counters.
            with stats.lock:
                if path not in created_dirs:
                    path.mkdir(parents=True, exist_ok=True)
                    created_dirs.add(path)

        def process(file_path: Path) -> Optional[FileFailure]:
            rel = file_path.relative_to(input_dir).as_posix()
            found = key_index.lookup(file_path.name)
            if not isinstance(found, Found):
                _LOGGER.warning(f"No decryption key found for file: {file_path.name} (path: {rel})")
                return FileFailure(rel, "no key")

            task = FileTask(file_path, rel, found.key)
            out_path = output_dir.joinpath(task.relative_path)
            try:
                ensure_dir(out_path.parent)
                self.decrypt(task.input_path, out_path, task.key)
            except Exception as e:
                _LOGGER.error(f"Failed to decrypt file {rel}: {e}")
                return FileFailure(rel, "decrypt", e)
            return None

        reporter = ProgressReporter(stats, total, self.progress_interval, self.report)
        reporter.start()
        try:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(process, f): f for f in files}
                for future in as_completed(futures):
                    failure = future.result()
                    succeeded = stats.record(failure is None)
                    if failure is not None:
                        failures.append(failure)
                    elif succeeded <= SHOW_FIRST:
                        _LOGGER.info(f"Decrypted: {futures[future].relative_to(input_dir).as_posix()}")
        finally:
            reporter.stop()

        final = stats.snapshot()
        print(f"Done. Processed: {final.processed}, Decrypted: {final.succeeded}, Failed: {final.failed}", flush=True)
        return PipelineResult(final.processed, final.succeeded, final.failed, total, failures)
