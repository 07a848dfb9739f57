#!/usr/bin/env python3
"""
Low-level file relocation

- Same filesystem: os.rename() (atomic, instant)
- Cross filesystem: chunked copy + verify size + copy metadata + delete source

The source is only deleted after the copy has been verified. A failed or
cancelled copy never leaves a partial target behind, and if the source
cannot be deleted the verified copy is removed again.
"""

import os
import errno
import shutil
import logging
import threading
from pathlib import Path
from typing import Optional

from mediasorter.errors import OperationCancelled

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 64 * 1024


def nearest_existing_parent(path: Path) -> Optional[Path]:
    """Closest ancestor of path (or path itself) that exists"""
    path = Path(path).absolute()
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return None


def same_filesystem(path_a: Path, path_b: Path) -> bool:
    """Check if two paths are on the same filesystem"""
    try:
        return os.stat(path_a).st_dev == os.stat(path_b).st_dev
    except OSError:
        return False


def copy_file(source: Path, dest: Path, buffer_size: int = DEFAULT_BUFFER_SIZE,
              cancel_event: Optional[threading.Event] = None) -> int:
    """
    Copy source to dest in chunks and verify the result

    Args:
        source: File to copy
        dest: Destination file path (must not exist)
        buffer_size: Chunk size in bytes
        cancel_event: Checked between chunks; when set the copy stops

    Returns:
        Number of bytes copied

    Raises:
        OperationCancelled: if cancel_event was set
        OSError: on I/O failure or size mismatch
    """
    source, dest = Path(source), Path(dest)
    expected = source.stat().st_size

    created = False
    try:
        with open(source, 'rb') as src, open(dest, 'xb') as dst:
            created = True
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled(str(source))
                chunk = src.read(buffer_size)
                if not chunk:
                    break
                dst.write(chunk)

        # Verify: destination size matches
        copied = dest.stat().st_size
        if copied != expected:
            raise OSError(errno.EIO, f"Verification failed: {dest} ({copied} of {expected} bytes)")

        shutil.copystat(str(source), str(dest))
    except (OSError, OperationCancelled):
        if created and dest.exists():
            dest.unlink()  # Clean up failed copy
            logger.debug(f"Removed partial copy {dest}")
        raise

    return copied


def relocate(source: Path, dest: Path, buffer_size: int = DEFAULT_BUFFER_SIZE,
             cancel_event: Optional[threading.Event] = None) -> bool:
    """
    Move source to dest, whose parent directory must already exist

    Returns:
        True if the move crossed filesystems (copy + delete), False for a rename
    """
    source, dest = Path(source), Path(dest)

    if same_filesystem(source, dest.parent):
        os.rename(source, dest)
        return False

    copy_file(source, dest, buffer_size, cancel_event)
    try:
        source.unlink()
    except OSError:
        # Source must stay the only copy
        dest.unlink()
        logger.warning(f"Could not delete {source} after copy; removed {dest}")
        raise
    return True
