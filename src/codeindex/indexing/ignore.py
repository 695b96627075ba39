"""
Ignore rule handling.

Parses .gitignore and .codeindexignore files into glob patterns and matches
workspace-relative paths against them.
"""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

IGNORE_FILES = (".gitignore", ".codeindexignore")


def gitignore_to_glob(pattern: str) -> str:
    """
    Convert a gitignore pattern to a glob pattern.

    - foo/ matches directories named foo (and their contents)
    - /foo matches foo only at the root
    - foo matches files and directories named foo anywhere
    """
    directory_only = pattern.endswith("/")
    pattern = pattern.rstrip("/")

    if pattern.startswith("/"):
        pattern = pattern[1:]
    elif not pattern.startswith("**/"):
        pattern = "**/" + pattern

    if directory_only:
        pattern += "/**"

    return pattern


def parse_ignore_file(path: Path) -> list[str]:
    """
    Parse an ignore file in gitignore syntax.

    Negation patterns are not supported and are skipped.
    """
    if not path.exists():
        return []

    patterns: list[str] = []

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read ignore file", path=str(path), error=str(e))
        return []

    for line in content.splitlines():
        line = line.strip()

        if not line or line.startswith("#"):
            continue

        if line.startswith("!"):
            logger.debug("Negation patterns not supported", pattern=line)
            continue

        patterns.append(gitignore_to_glob(line))

    return patterns


def load_ignore_patterns(workspace_root: Path, defaults: list[str] | None = None) -> list[str]:
    """Combine the configured defaults with the workspace's ignore files."""
    patterns = list(defaults or [])
    for name in IGNORE_FILES:
        patterns.extend(parse_ignore_file(workspace_root / name))
    return patterns


def is_ignored(relative_path: str | Path, patterns: list[str], is_dir: bool = False) -> bool:
    """
    Check a workspace-relative path against glob patterns.

    The path is matched with a leading separator so that ``**/name/**``
    patterns also cover entries at the workspace root.
    """
    rel = str(relative_path).replace(os.sep, "/").lstrip("/")
    if not rel or rel == ".":
        return False

    candidates = [rel, "/" + rel]
    if is_dir:
        candidates.append("/" + rel + "/")

    for pattern in patterns:
        for candidate in candidates:
            if fnmatch.fnmatch(candidate, pattern):
                return True
    return False
