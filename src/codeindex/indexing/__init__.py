"""
Indexing modules for codeindex.

Provides:
- Line-based block splitting
- Embedding generation over OpenAI-compatible APIs
- Ignore file parsing (.gitignore, .codeindexignore)
- Full workspace scanning
- File system watching with debouncing
"""

from codeindex.indexing.embedder import EmbeddingBackend, create_embedder
from codeindex.indexing.ignore import is_ignored, load_ignore_patterns, parse_ignore_file
from codeindex.indexing.parser import CodeBlock, CodeParser
from codeindex.indexing.scanner import DirectoryScanner, ScanResult
from codeindex.indexing.watcher import BatchProgress, BatchSummary, FileWatcher

__all__ = [
    "BatchProgress",
    "BatchSummary",
    "CodeBlock",
    "CodeParser",
    "DirectoryScanner",
    "EmbeddingBackend",
    "FileWatcher",
    "ScanResult",
    "create_embedder",
    "is_ignored",
    "load_ignore_patterns",
    "parse_ignore_file",
]
