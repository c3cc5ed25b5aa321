"""Atomic file replacement for the persisted store files.

Every persisted file is written to a sibling ``.tmp`` path first and then
moved over the target with ``os.replace``, which is atomic at the kernel
level. A reader (or a process that crashes mid-write) therefore sees either
the previous complete file or the new complete file, never a torn one.

The two store files are still written independently: the vector index first,
then the metadata. Recovery from a crash between the two writes is handled by
the vector store when it loads.
"""

import logging
import os
import time
from pathlib import Path
from typing import Callable

from ..errors import StoreIOError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_path_for(target_file: Path) -> Path:
    return Path(str(target_file) + TEMP_SUFFIX)


def atomic_write(target_file: Path, write_fn: Callable[[Path], None]) -> None:
    """Write ``target_file`` through a temporary file and an atomic rename.

    Args:
        target_file: Final location of the file
        write_fn: Callable that writes the complete content to the path it is given

    Raises:
        StoreIOError: If the parent directory is missing, the write fails, or the
            rename fails. The temporary file is removed on every failure path.
    """
    temp_file = temp_path_for(target_file)

    try:
        write_fn(temp_file)
        os.replace(temp_file, target_file)
    except OSError as e:
        _discard(temp_file)
        raise StoreIOError("writing", target_file, str(e)) from e
    except Exception:
        _discard(temp_file)
        raise

    logger.debug(f"Atomic swap: {temp_file} -> {target_file}")


def write_text_atomic(target_file: Path, text: str) -> None:
    """Atomically replace ``target_file`` with ``text`` (UTF-8)."""

    def _write(path: Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

    atomic_write(target_file, _write)


def cleanup_orphaned_temp_files(directory: Path, age_threshold_seconds: int = 0) -> int:
    """Remove ``*.tmp`` files left behind by a crash during a write.

    Args:
        directory: Store directory to scan
        age_threshold_seconds: Only remove temp files older than this

    Returns:
        Number of files removed
    """
    removed_count = 0
    current_time = time.time()

    for temp_file in directory.glob(f"*{TEMP_SUFFIX}"):
        if not temp_file.is_file():
            continue
        try:
            age = current_time - temp_file.stat().st_mtime
            if age >= age_threshold_seconds:
                temp_file.unlink()
                removed_count += 1
                logger.info(f"Removed orphaned temp file (age: {age:.0f}s): {temp_file}")
        except OSError as e:
            logger.warning(f"Failed to remove orphaned temp file {temp_file}: {e}")

    return removed_count


def _discard(temp_file: Path) -> None:
    try:
        if temp_file.exists():
            temp_file.unlink()
            logger.debug(f"Cleaned up temp file after error: {temp_file}")
    except OSError as e:
        logger.warning(f"Failed to clean up temp file {temp_file}: {e}")
