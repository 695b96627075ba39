"""
codeindex main entry point.

Provides the CodeIndexService composition root and the CLI interface.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

import click
import structlog

from codeindex.config import Config, ConfigManager, load_config
from codeindex.state import IndexingStatus, IndexStateManager, SystemState

if TYPE_CHECKING:
    from codeindex.events import Disposable
    from codeindex.indexing.embedder import EmbeddingBackend
    from codeindex.indexing.scanner import DirectoryScanner
    from codeindex.indexing.watcher import FileWatcher
    from codeindex.metrics.telemetry import TelemetryCollector
    from codeindex.orchestrator import IndexOrchestrator
    from codeindex.storage.cache_store import CacheStore
    from codeindex.storage.vector_store import VectorStore

logger = structlog.get_logger(__name__)


class CodeIndexService:
    """
    Per-workspace code index service.

    Builds the default collaborators from configuration and exposes the
    orchestrator's lifecycle operations. It manages:
    - File hash cache and vector collection
    - Embedding backend
    - Workspace scanner and file watcher
    - Local telemetry
    """

    def __init__(self, config: Config | None = None) -> None:
        """
        Initialize the service.

        Args:
            config: Configuration instance. Uses default if not provided.
        """
        self.config = config or Config()
        self.config_manager = ConfigManager(self.config)
        self.state_manager = IndexStateManager()

        self._cache_store: CacheStore | None = None
        self._vector_store: VectorStore | None = None
        self._embedder: EmbeddingBackend | None = None
        self._scanner: DirectoryScanner | None = None
        self._watcher: FileWatcher | None = None
        self._telemetry: TelemetryCollector | None = None
        self._orchestrator: IndexOrchestrator | None = None

        self._initialized = False
        self._shutdown_event = asyncio.Event()

        logger.info(
            "codeindex service created",
            workspace_root=str(self.config.workspace_root),
            data_dir=str(self.config.absolute_data_dir),
        )

    @property
    def orchestrator(self) -> "IndexOrchestrator":
        if self._orchestrator is None:
            raise RuntimeError("Service not initialized")
        return self._orchestrator

    @property
    def state(self) -> SystemState:
        return self.state_manager.state

    async def initialize(self) -> None:
        """Build all components."""
        if self._initialized:
            return

        logger.info("Initializing codeindex service")

        # Import here to avoid circular imports
        from codeindex.indexing.embedder import create_embedder
        from codeindex.indexing.parser import CodeParser
        from codeindex.indexing.scanner import DirectoryScanner
        from codeindex.indexing.watcher import FileWatcher
        from codeindex.metrics.telemetry import TelemetryCollector
        from codeindex.orchestrator import IndexOrchestrator
        from codeindex.storage.cache_store import CacheStore
        from codeindex.storage.vector_store import VectorStore

        self.config.ensure_directories()

        self._cache_store = CacheStore(self.config)
        await self._cache_store.initialize()

        # The orchestrator opens the collection when a run starts
        self._vector_store = VectorStore(self.config)

        self._embedder = create_embedder(self.config)

        self._telemetry = TelemetryCollector(self.config)
        await self._telemetry.initialize()

        parser = CodeParser(self.config)
        self._scanner = DirectoryScanner(
            config=self.config,
            embedder=self._embedder,
            vector_store=self._vector_store,
            cache_store=self._cache_store,
            parser=parser,
        )
        self._watcher = FileWatcher(
            config=self.config,
            embedder=self._embedder,
            vector_store=self._vector_store,
            cache_store=self._cache_store,
            parser=parser,
        )

        self._orchestrator = IndexOrchestrator(
            config_manager=self.config_manager,
            state_manager=self.state_manager,
            workspace_path=self.config.workspace_root,
            cache_manager=self._cache_store,
            vector_store=self._vector_store,
            scanner=self._scanner,
            file_watcher=self._watcher,
            telemetry=self._telemetry,
        )

        self._initialized = True
        logger.info("codeindex service initialized")

    async def _close_components(self) -> None:
        if self._orchestrator:
            self._orchestrator.stop_watcher()

        if self._embedder:
            await self._embedder.close()

        if self._vector_store:
            await self._vector_store.close()

        if self._cache_store:
            await self._cache_store.close()

        if self._telemetry:
            await self._telemetry.close()

        self._orchestrator = None
        self._scanner = None
        self._watcher = None
        self._embedder = None
        self._vector_store = None
        self._cache_store = None
        self._telemetry = None
        self._initialized = False

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        logger.info("Shutting down codeindex service")
        self._shutdown_event.set()
        await self._close_components()
        logger.info("codeindex service shutdown complete")

    @asynccontextmanager
    async def session(self) -> AsyncIterator["CodeIndexService"]:
        """Context manager for service lifecycle."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    async def start_indexing(self) -> None:
        """Run a full scan and start watching for changes."""
        if not self.config_manager.is_feature_enabled:
            logger.info("Code indexing is disabled")
            return

        if not self._initialized:
            await self.initialize()

        await self.orchestrator.start_indexing()

    def stop_watcher(self) -> None:
        if self._orchestrator:
            self._orchestrator.stop_watcher()

    async def clear_index_data(self) -> None:
        if not self._initialized:
            await self.initialize()

        await self.orchestrator.clear_index_data()

    def get_current_status(self) -> IndexingStatus:
        return self.state_manager.get_current_status()

    def on_progress_update(self, listener: Callable[[IndexingStatus], None]) -> "Disposable":
        return self.state_manager.on_progress_update(listener)

    async def apply_config(self, config: Config) -> bool:
        """
        Switch to a new configuration.

        Components are rebuilt when the change affects them; the caller
        decides whether to start indexing again.

        Returns:
            True if the services were restarted.
        """
        restart = self.config_manager.update(config)
        was_initialized = self._initialized

        if restart and was_initialized:
            await self._close_components()

        self.config = config

        if restart and was_initialized:
            await self.initialize()

        return restart

    async def get_stats(self) -> dict[str, Any]:
        """Get index statistics."""
        if not self._initialized:
            await self.initialize()

        stats: dict[str, Any] = {
            "workspace_root": str(self.config.workspace_root),
            "enabled": self.config_manager.is_feature_enabled,
            "configured": self.config_manager.is_feature_configured,
            "status": self.get_current_status().to_dict(),
        }

        if self._cache_store:
            stats["cache"] = await self._cache_store.get_stats()

        if self._vector_store:
            stats["vectors"] = await self._vector_store.get_stats()

        return stats


def _configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
    )


# CLI Implementation
@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd(),
    help="Workspace root directory",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, workspace: Path, verbose: bool) -> None:
    """codeindex - semantic code index for a workspace."""
    ctx.ensure_object(dict)

    loaded = load_config(config_path=config, workspace_root=workspace)
    _configure_logging("DEBUG" if verbose else loaded.log_level)

    ctx.obj["config"] = loaded


@cli.command()
@click.pass_context
def index(ctx: click.Context) -> None:
    """Build the index for the workspace."""
    config = ctx.obj["config"]

    async def run_index() -> IndexingStatus:
        service = CodeIndexService(config)
        async with service.session():
            service.on_progress_update(lambda status: click.echo(status.message.text))
            await service.start_indexing()
            return service.get_current_status()

    status = asyncio.run(run_index())
    if status.state != SystemState.INDEXED:
        click.echo(f"Indexing failed: {status.message.text}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Index the workspace, then keep it current until interrupted."""
    config = ctx.obj["config"]

    async def run_watch() -> bool:
        service = CodeIndexService(config)

        # Handle signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, service._shutdown_event.set)

        async with service.session():
            service.on_progress_update(lambda status: click.echo(status.message.text))
            await service.start_indexing()

            if service.state != SystemState.INDEXED:
                return False

            click.echo("Watching for changes... (Ctrl+C to stop)")
            await service.wait_for_shutdown()
        return True

    if not asyncio.run(run_watch()):
        sys.exit(1)


@cli.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Delete the vector collection and the file cache."""
    config = ctx.obj["config"]

    async def run_clear() -> IndexingStatus:
        service = CodeIndexService(config)
        async with service.session():
            await service.clear_index_data()
            return service.get_current_status()

    status = asyncio.run(run_clear())
    click.echo(status.message.text)
    if status.state == SystemState.ERROR:
        sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show configuration and index statistics."""
    config = ctx.obj["config"]

    async def run_status() -> dict[str, Any]:
        service = CodeIndexService(config)
        async with service.session():
            return await service.get_stats()

    stats = asyncio.run(run_status())

    if as_json:
        click.echo(json.dumps(stats, indent=2, default=str))
        return

    click.echo("codeindex Statistics")
    click.echo("=" * 40)
    for key, value in stats.items():
        if isinstance(value, dict):
            click.echo(f"\n{key}:")
            for k, v in value.items():
                click.echo(f"  {k}: {v}")
        else:
            click.echo(f"{key}: {value}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
