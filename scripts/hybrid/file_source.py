"""
File system access for scans.

``list_files(root)`` walks a project tree, pruning dependency, build and VCS
directories and skipping oversized files. ``read_file(path)`` reads source
text, replacing undecodable bytes, and ``load_content(meta)`` caches it on
the ``FileMeta`` so later phases reuse one read.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Union

from hybrid.models import FileMeta

logger = logging.getLogger(__name__)

SKIP_DIRECTORIES = frozenset({
    # Dependencies
    "node_modules",
    "vendor",
    # Bundled/static assets
    "assets",
    "public",
    "static",
    # Version control
    ".git",
    ".hg",
    ".svn",
    # Python virtual environments and caches
    "venv",
    ".venv",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".tox",
    ".coverage",
    # Build outputs
    "dist",
    "build",
    "out",
    "target",
    # Package manager and tooling
    ".cargo",
    ".next",
    ".babel_cache",
    ".cache",
    "coverage",
})

DEFAULT_MAX_FILE_SIZE = 1024 * 1024


def list_files(
    root: Union[str, Path], max_file_size: int = DEFAULT_MAX_FILE_SIZE
) -> list[FileMeta]:
    """List files under ``root`` in a stable (sorted) order."""
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Project directory not found: {root}")

    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRECTORIES)
        for name in sorted(filenames):
            path = Path(dirpath) / name
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.warning("Cannot stat %s: %s", path, e)
                continue
            if size > max_file_size:
                logger.debug("Skipping %s (%d bytes > %d)", path, size, max_file_size)
                continue
            files.append(FileMeta(path=str(path), size=size))

    logger.info("Found %d files under %s", len(files), root)
    return files


def read_file(path: Union[str, Path]) -> str:
    with open(path, encoding="utf-8", errors="replace") as f:
        return f.read()


def load_content(meta: FileMeta, reader: Callable[[str], str] = read_file) -> str:
    """Return ``meta.content``, reading it with ``reader`` and caching it on first use."""
    if meta.content is None:
        meta.content = reader(meta.path)
    return meta.content


__all__ = ["DEFAULT_MAX_FILE_SIZE", "SKIP_DIRECTORIES", "list_files", "load_content", "read_file"]
