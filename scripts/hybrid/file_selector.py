"""
File selection for the AI phase.

Decides which scanned files are worth a reasoning-service call:

    regex_only   -> nothing
    analyze_all  -> every supported source file
    smart        -> supported files whose path or content mentions a
                    security keyword

Selection is deterministic and preserves input order.
"""

import logging
from pathlib import PurePath
from typing import Callable, Iterable, Optional

from hybrid.file_source import load_content, read_file
from hybrid.models import FileMeta, ScanMode

logger = logging.getLogger(__name__)

DEFAULT_SMART_KEYWORDS = (
    "auth",
    "login",
    "password",
    "secret",
    "token",
    "sql",
    "db",
    "api",
    "request",
    "session",
)

SUPPORTED_EXTENSIONS = frozenset({
    ".py", ".js", ".ts", ".tsx", ".jsx", ".mjs", ".cjs",
    ".go", ".java", ".rb", ".php", ".rs",
})


class FileSelector:
    """Pick files for AI analysis according to the scan mode."""

    def __init__(
        self,
        keywords: Optional[Iterable[str]] = None,
        reader: Callable[[str], str] = read_file,
    ):
        keywords = DEFAULT_SMART_KEYWORDS if keywords is None else keywords
        self.keywords = tuple(k.lower() for k in keywords if k)
        self.reader = reader

    def select(self, files: list[FileMeta], mode) -> list[FileMeta]:
        mode = ScanMode.parse(mode)
        if mode is ScanMode.REGEX_ONLY:
            return []

        supported = [f for f in files if is_supported(f.path)]
        if mode is ScanMode.ANALYZE_ALL:
            selected = supported
        else:
            selected = [f for f in supported if self.is_security_relevant(f)]

        logger.info(
            "Selected %d/%d files for AI analysis (mode=%s)",
            len(selected), len(files), mode.value,
        )
        return selected

    def is_security_relevant(self, meta: FileMeta) -> bool:
        path = meta.path.lower()
        if any(k in path for k in self.keywords):
            return True
        try:
            content = load_content(meta, self.reader)
        except OSError as e:
            logger.warning("Cannot read %s for selection: %s", meta.path, e)
            return False
        content = content.lower()
        return any(k in content for k in self.keywords)


def is_supported(file_path: str) -> bool:
    return PurePath(file_path).suffix.lower() in SUPPORTED_EXTENSIONS


__all__ = ["DEFAULT_SMART_KEYWORDS", "FileSelector", "SUPPORTED_EXTENSIONS", "is_supported"]
