"""
Line-based code block splitter.

Splits a file into blocks of bounded size, preferring natural break points
(blank lines, dedents, the end of a comment run) when a block has to be cut.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)

_COMMENT_PREFIXES = ("#", "//", "*", "/*", "--")


def hash_content(content: str) -> str:
    """Content hash used for change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CodeBlock:
    """A contiguous span of a source file."""

    file_path: str
    start_line: int
    end_line: int
    content: str
    file_hash: str
    segment_hash: str

    @property
    def block_id(self) -> str:
        return self.segment_hash[:32]


class CodeParser:
    """Splits source files into CodeBlocks."""

    def __init__(self, config: "Config") -> None:
        self.min_chars = config.chunking.min_block_chars
        self.max_chars = config.chunking.max_block_chars
        self.hard_limit = int(self.max_chars * config.chunking.max_chars_tolerance)

    def parse_file(
        self,
        path: Path | str,
        content: str,
        file_hash: str | None = None,
    ) -> list[CodeBlock]:
        """
        Split a file into blocks.

        A file that fits in one block is returned whole, whatever its size,
        unless it is empty.

        Args:
            path: File path (stored in the block payload).
            content: File content.
            file_hash: Precomputed content hash.
        """
        file_path = str(path)
        file_hash = file_hash or hash_content(content)

        if not content.strip():
            return []

        lines = content.split("\n")

        if len(content) <= self.hard_limit:
            return [self._make_block(file_path, file_hash, 1, len(lines), content)]

        blocks: list[CodeBlock] = []
        current: list[str] = []
        current_len = 0
        start_line = 1

        def flush(end_line: int) -> None:
            nonlocal current, current_len, start_line
            text = "\n".join(current)
            if len(text.strip()) >= self.min_chars:
                blocks.append(self._make_block(file_path, file_hash, start_line, end_line, text))
            current = []
            current_len = 0
            start_line = end_line + 1

        for i, line in enumerate(lines):
            line_no = i + 1

            if len(line) > self.hard_limit:
                if current:
                    flush(line_no - 1)
                blocks.extend(self._split_long_line(file_path, file_hash, line_no, line))
                start_line = line_no + 1
                continue

            if current and current_len + len(line) + 1 > self.hard_limit:
                flush(line_no - 1)

            current.append(line)
            current_len += len(line) + 1

            next_line = lines[i + 1] if i + 1 < len(lines) else ""
            if current_len >= self.max_chars and self._is_natural_break(line, next_line):
                flush(line_no)

        if current:
            flush(len(lines))

        return blocks

    def _split_long_line(
        self,
        file_path: str,
        file_hash: str,
        line_no: int,
        line: str,
    ) -> list[CodeBlock]:
        """Segment a single over-long line."""
        segments = []
        for offset in range(0, len(line), self.max_chars):
            segment = line[offset : offset + self.max_chars]
            if len(segment.strip()) >= self.min_chars:
                segments.append(
                    self._make_block(
                        file_path, file_hash, line_no, line_no, segment, salt=str(offset)
                    )
                )
        return segments

    def _make_block(
        self,
        file_path: str,
        file_hash: str,
        start_line: int,
        end_line: int,
        content: str,
        salt: str = "",
    ) -> CodeBlock:
        key = f"{file_path}-{start_line}-{end_line}-{salt}-{hash_content(content)}"
        return CodeBlock(
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            content=content,
            file_hash=file_hash,
            segment_hash=hashlib.sha256(key.encode("utf-8")).hexdigest(),
        )

    def _is_natural_break(self, current_line: str, next_line: str) -> bool:
        """Check if this is a natural break point for splitting."""
        if not current_line.strip():
            return True

        current_indent = len(current_line) - len(current_line.lstrip())
        next_indent = len(next_line) - len(next_line.lstrip()) if next_line else 0

        if next_indent < current_indent and next_line.strip():
            return True

        if current_line.strip().startswith(_COMMENT_PREFIXES):
            stripped = next_line.strip()
            if stripped and not stripped.startswith(_COMMENT_PREFIXES):
                return True

        return False
