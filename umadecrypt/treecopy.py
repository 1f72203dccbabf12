import os
import shutil
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

from .log import get_logger

_LOGGER = get_logger(__name__)

COPIED = "copied"
SKIPPED = "skipped"
FAILED = "failed"


class CopyOutcome(NamedTuple):
    relative_path: str
    status: str
    error: Optional[Exception] = None


def copy_tree(src: Union[str, Path], dst: Union[str, Path], skip_existing: bool = False) -> List[CopyOutcome]:
    """Mirror src into dst, one outcome per file or unreadable directory."""
    src, dst = Path(src), Path(dst)
    outcomes = []

    def on_error(e: OSError):
        rel = os.path.relpath(e.filename, src) if e.filename else "."
        _LOGGER.warning(f"Failed to list directory {rel}: {e}")
        outcomes.append(CopyOutcome(rel, FAILED, e))

    for root, _, files in os.walk(src, onerror=on_error):
        rel_root = Path(root).relative_to(src)
        target_dir = dst.joinpath(rel_root)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            _LOGGER.warning(f"Failed to create directory {target_dir}: {e}")
            outcomes.extend(CopyOutcome(rel_root.joinpath(f).as_posix(), FAILED, e) for f in files)
            continue

        for name in files:
            rel = rel_root.joinpath(name).as_posix()
            target = target_dir.joinpath(name)
            if skip_existing and target.exists():
                _LOGGER.debug(f"Skipping existing file: {rel}")
                outcomes.append(CopyOutcome(rel, SKIPPED))
                continue
            try:
                shutil.copy2(Path(root, name), target)
            except OSError as e:
                _LOGGER.warning(f"Failed to copy file {rel}: {e}")
                outcomes.append(CopyOutcome(rel, FAILED, e))
                continue
            outcomes.append(CopyOutcome(rel, COPIED))
    return outcomes


def count_outcomes(outcomes: List[CopyOutcome]) -> dict:
    counts = {COPIED: 0, SKIPPED: 0, FAILED: 0}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return counts
