"""Recursive source-file discovery."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Set

from .config import IGNORE_DIRS, SUPPORTED_EXTENSIONS

logger = logging.getLogger(__name__)


def resolve_root(repo_path: Path, root: str) -> Optional[Path]:
    """Resolve *root* against *repo_path* unless it is already absolute.

    Returns ``None`` when the result is not an existing file or directory.
    """
    candidate = Path(root).expanduser()
    path = candidate if candidate.is_absolute() else Path(repo_path) / candidate
    if path.is_file() or path.is_dir():
        return path.resolve()
    return None


def _relative(path: Path, repo_path: Path) -> str:
    try:
        return path.relative_to(repo_path).as_posix()
    except ValueError:
        return path.as_posix()


def discover_files(
    root: Path,
    repo_path: Path,
    exclude_patterns: Iterable[str] = (),
    include_patterns: Iterable[str] = (),
    extensions: Set[str] = SUPPORTED_EXTENSIONS,
    ignore_dirs: Set[str] = IGNORE_DIRS,
) -> List[Path]:
    """List source files under *root* in a stable order.

    Patterns are plain substrings matched against the repo-relative path.
    Excludes prune directories as well as files; includes only gate files.
    Unreadable directories are logged and skipped.
    """
    exclude = [p for p in exclude_patterns if p]
    include = [p for p in include_patterns if p]

    if root.is_file():
        return [root]

    files: List[Path] = []
    stack = [root]
    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Failed to read directory %s: %s", directory, exc)
            continue

        subdirs: List[Path] = []
        for entry in entries:
            path = Path(entry.path)
            rel = _relative(path, repo_path)
            if any(p in rel for p in exclude):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name not in ignore_dirs:
                        subdirs.append(path)
                elif entry.is_file() and path.suffix in extensions:
                    if not include or any(p in rel for p in include):
                        files.append(path)
            except OSError as exc:
                logger.warning("Skipping %s: %s", path, exc)
        stack.extend(reversed(subdirs))

    logger.debug("Discovered %d files under %s", len(files), root)
    return files


def iter_source_files(repo_path: Path, scope: Optional[str] = None) -> List[Path]:
    """Source files of the whole repository, or of *scope* inside it."""
    root = repo_path
    if scope:
        resolved = resolve_root(repo_path, scope)
        if resolved is None:
            return []
        root = resolved
    return discover_files(root, repo_path)
