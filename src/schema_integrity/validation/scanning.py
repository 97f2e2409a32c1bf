"""Source file discovery and parallel per-file extraction.

Each file is parsed in a worker thread; nothing is shared between
workers.  Results come back in discovery order and are merged by the
caller in a single pass.  A file that fails to parse is skipped with a
warning instead of aborting the scan.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

IGNORED_DIRECTORIES = frozenset({
    "node_modules",
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    "dist",
    "build",
    "site-packages",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
})

# Errors that mean "this one file is unreadable", never "the scan is broken"
PARSE_ERRORS = (SyntaxError, ValueError, OSError, RecursionError)


def _is_ignored(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part in IGNORED_DIRECTORIES for part in parts[:-1])


def discover_files(
    root: Path,
    patterns: Iterable[str],
    directories: Iterable[str],
    extensions: Iterable[str],
) -> list[Path]:
    """Find source files by glob patterns and extra directories.

    Args:
        root: Project root the patterns are relative to.
        patterns: Glob patterns such as ``**/routes/**/*.py``.
        directories: Extra directories scanned recursively.
        extensions: Allowed file suffixes (with the dot).

    Returns:
        Sorted, de-duplicated list of files.
    """
    allowed = {ext.lower() for ext in extensions}
    found: set[Path] = set()

    def consider(path: Path) -> None:
        if path.is_file() and path.suffix.lower() in allowed and not _is_ignored(path, root):
            found.add(path)

    for pattern in patterns:
        for path in root.glob(pattern):
            consider(path)

    for directory in directories:
        base = root / directory
        if not base.is_dir():
            logger.warning(f"Scan directory not found: {base}")
            continue
        for path in base.rglob("*"):
            consider(path)

    return sorted(found)


def _extract_one(path: Path, extract: Callable[[Path], list[T]]) -> tuple[list[T], str | None]:
    try:
        return extract(path), None
    except PARSE_ERRORS as e:
        return [], f"Skipped {path}: {type(e).__name__}: {e}"


async def scan_files(
    paths: list[Path],
    extract: Callable[[Path], list[T]],
) -> tuple[list[T], list[str]]:
    """Run ``extract`` over ``paths`` concurrently.

    Returns:
        Tuple of (items in file order, warnings for skipped files).
    """
    outcomes = await asyncio.gather(
        *(asyncio.to_thread(_extract_one, path, extract) for path in paths)
    )

    items: list[T] = []
    warnings: list[str] = []
    for found, warning in outcomes:
        items.extend(found)
        if warning:
            logger.warning(warning)
            warnings.append(warning)
    return items, warnings
