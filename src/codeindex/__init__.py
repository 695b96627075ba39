"""
codeindex - semantic code index for a workspace.

Builds and maintains an embedding index over a workspace's source files:
a full scan on start, then incremental updates from a file watcher.
"""

__version__ = "0.1.0"
__all__ = [
    "Config",
    "CodeIndexService",
    "IndexOrchestrator",
    "OrchestratorRegistry",
]

from codeindex.config import Config
from codeindex.main import CodeIndexService
from codeindex.orchestrator import IndexOrchestrator
from codeindex.registry import OrchestratorRegistry
