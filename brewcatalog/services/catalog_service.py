"""
Owner of the live catalog handle.

Wires the fetcher, scanner, aggregator, executor and reconciler together and
is the single place where a freshly aggregated catalog replaces the previous
one.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Sequence, Set

import httpx

from brewcatalog.data.config import resolve_brew_prefix, resolve_cache_dir
from brewcatalog.domain.catalog import Catalog
from brewcatalog.domain.errors import CatalogNotLoadedError, PackageNotFoundError
from brewcatalog.domain.filters import FilterSet
from brewcatalog.domain.models import EngineConfig, Package
from brewcatalog.services.aggregator import Aggregator
from brewcatalog.services.executor import CommandExecutor, CommandFinished, CommandType
from brewcatalog.services.fetcher import SourceFetcher
from brewcatalog.services.reconciler import Reconciler
from brewcatalog.services.release_info import ReleaseInfoFetcher
from brewcatalog.services.scanner import InstalledScanner
from brewcatalog.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(
        self,
        config: EngineConfig,
        prefix: Optional[Path] = None,
        cache_dir: Optional[Path] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        clock: Callable[[], float] = time.time,
        update_on_first_load: bool = True,
    ):
        self.config = config
        # Fails fast on a bad configured filter list.
        self.default_filters = FilterSet.parse(config.default_filters)

        self.cache = CacheStore(
            cache_dir or resolve_cache_dir(config),
            ttl=config.cache_ttl_seconds,
            clock=clock,
            invalidated=config.invalidate_cache,
        )
        self.fetcher = SourceFetcher(
            self.cache,
            timeout=config.http_timeout_seconds,
            client_factory=client_factory,
        )
        self.scanner = InstalledScanner(
            prefix or resolve_brew_prefix(config),
            fetch_size=config.fetch_size,
        )
        self.aggregator = Aggregator(config, self.fetcher, self.scanner)
        self.executor = CommandExecutor(config.brew_executable)
        self.release_info = ReleaseInfoFetcher() if config.fetch_release_info else None

        self._catalog: Optional[Catalog] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._update_pending = update_on_first_load

    # ------------------------------------------------------------------
    # Catalog handle
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._catalog is not None

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            raise CatalogNotLoadedError("catalog has not been loaded yet")
        return self._catalog

    async def refresh(self, invalidate: bool = False) -> Catalog:
        """
        Run one aggregation cycle and publish its catalog.

        A refresh still in flight is cancelled; its callers receive the result
        of the newer cycle. On failure the previous catalog stays published.
        """
        previous = self._refresh_task
        if previous is not None and not previous.done():
            logger.info("Cancelling refresh in flight")
            previous.cancel()

        if invalidate:
            self.cache.invalidate()

        task = asyncio.create_task(self.aggregator.load())
        self._refresh_task = task
        try:
            catalog = await task
        except asyncio.CancelledError:
            latest = self._refresh_task
            if latest is None or latest is task:
                raise
            return await asyncio.shield(latest)
        finally:
            if self._refresh_task is task:
                self._refresh_task = None

        self._catalog = catalog
        self._after_load(catalog)
        return catalog

    def _after_load(self, catalog: Catalog) -> None:
        if self._update_pending:
            self._update_pending = False
            self._spawn(self._update_brew())
        if self.release_info is not None:
            self._spawn(self._fill_release_info(catalog))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, name: str, cask: Optional[bool] = None) -> Package:
        pkg = self.catalog.get(name, cask)
        if pkg is None:
            raise PackageNotFoundError(name)
        return pkg

    def search(self, keywords: Sequence[str] = (), filter_names: Optional[Sequence[str]] = None) -> List[Package]:
        """Search the catalog; `filter_names` None means the configured defaults."""
        if filter_names is None:
            filters = self.default_filters
        else:
            filters = FilterSet.parse(filter_names)
        return self.catalog.search(keywords, filters)

    def missing_dependencies(self, name: str, cask: Optional[bool] = None) -> List[str]:
        pkg = self.find(name, cask)
        return self.catalog.missing_dependencies(pkg.name, pkg.is_cask)

    def installed_dependents(self, name: str, cask: Optional[bool] = None) -> List[str]:
        pkg = self.find(name, cask)
        return self.catalog.installed_dependents(pkg.name, pkg.is_cask)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def resolve_targets(self, command: CommandType, names: Sequence[str] = (), cask: Optional[bool] = None) -> List[Package]:
        catalog = self.catalog
        if command is CommandType.UPGRADE_ALL:
            # Pinned packages are skipped by `brew upgrade`.
            return [p for p in catalog.outdated() if not p.is_pinned]
        if command is CommandType.CLEANUP:
            return []
        return [self.find(name, cask) for name in names]

    async def run_command(self, command: CommandType, packages: Sequence[Package]) -> AsyncIterator[object]:
        """
        Stream executor events for `command`; on success the catalog is
        patched before the CommandFinished event is passed on. The patch is
        applied even if the caller stops iterating early.
        """
        reconciler = Reconciler(self.catalog, self.scanner.package_size)

        async def reconcile(finished: CommandFinished) -> None:
            await reconciler.apply(command, finished.packages)

        async with aclosing(self.executor.run(command, packages, on_success=reconcile)) as events:
            async for event in events:
                yield event

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _update_brew(self) -> None:
        cmd = [self.config.brew_executable, "update"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await proc.communicate()
        except OSError as e:
            logger.warning(f"Failed to run {' '.join(cmd)}: {e}")
            return
        if proc.returncode != 0:
            logger.warning(f"{' '.join(cmd)} exited with status {proc.returncode}: {stdout.decode(errors='replace').strip()}")
        else:
            logger.info(f"{' '.join(cmd)} finished")

    async def _fill_release_info(self, catalog: Catalog) -> None:
        await self.release_info.fill(catalog.installed())

    async def close(self) -> None:
        tasks = list(self._background)
        if self._refresh_task is not None:
            tasks.append(self._refresh_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.executor.close()
