"""Writing into the output tree.

The output directory is the one resource shared with outside readers (the
dev server, a deploy step). Files are written to a temporary sibling and
moved into place with ``os.replace`` so a reader sees either the old or the
new file, never a partial one. Unchanged content is not rewritten, which
keeps modification times stable across no-op rebuilds.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from .errors import OutputWriteError

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".kiln-"


def _target(root: Path, rel: str) -> Path:
    target = (root / rel).resolve()
    if root.resolve() not in target.parents:
        raise OutputWriteError(f"output path escapes the output directory: {rel}")
    return target


def write_atomic(root: Path, rel: str, data: bytes) -> bool:
    """Write ``data`` to ``root/rel`` atomically.

    Args:
        root: Output root.
        rel: Output path relative to the root.
        data: File content.

    Returns:
        True if the file was written, False if it already held ``data``.

    Raises:
        OutputWriteError: On any filesystem error.
    """
    target = _target(root, rel)
    try:
        if target.is_file() and target.stat().st_size == len(data) and target.read_bytes() == data:
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=STAGING_PREFIX, dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
    except OSError as exc:
        raise OutputWriteError(f"cannot write {rel}: {exc}", target, exc) from exc
    return True


def _prune_empty_dirs(root: Path, start: Path) -> None:
    root = root.resolve()
    current = start
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


def remove_output(root: Path, rel: str) -> bool:
    """Delete an output file and any directories it leaves empty.

    Returns:
        True if a file was removed.
    """
    target = _target(root, rel)
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    _prune_empty_dirs(root, target.parent)
    return True


def prune_orphans(root: Path, claimed: Iterable[str]) -> list[str]:
    """Remove files in the output tree that no node produces.

    Used after a cold build so outputs of sources deleted while no session
    was running do not linger.

    Returns:
        Relative paths that were removed, sorted.
    """
    if not root.is_dir():
        return []
    keep = set(claimed)
    removed: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root, topdown=False):
        for filename in filenames:
            path = Path(dirpath) / filename
            rel = path.relative_to(root).as_posix()
            if rel in keep:
                continue
            path.unlink()
            removed.append(rel)
        if Path(dirpath) != root:
            try:
                os.rmdir(dirpath)
            except OSError:
                pass
    removed.sort()
    if removed:
        logger.debug("pruned %d orphaned output file(s)", len(removed))
    return removed
