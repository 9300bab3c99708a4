"""
Merge remote feeds and local installation data into one Catalog.

All producers (feed downloads and local scans) run concurrently and report a
uniform SourceResult through a single queue. The first failure aborts the
cycle: outdated and dependent computation needs every source, so a partial
catalog is never published.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from brewcatalog.domain import package_utils
from brewcatalog.domain.catalog import Catalog
from brewcatalog.domain.errors import AggregationError, FormulaParseError
from brewcatalog.domain.models import (
    AnalyticsFeed,
    CaskEntry,
    EngineConfig,
    FormulaEntry,
    InstallInfo,
    Package,
    Platform,
)
from brewcatalog.services.fetcher import FeedSpec, SourceFetcher, default_feeds
from brewcatalog.services.formula_parser import load_formula_source
from brewcatalog.services.scanner import InstalledScanner

logger = logging.getLogger(__name__)

SOURCE_FORMULAE = "formulae"
SOURCE_CASKS = "casks"
SOURCE_FORMULA_ANALYTICS = "formula_analytics"
SOURCE_CASK_ANALYTICS = "cask_analytics"
SOURCE_INSTALLED_FORMULAE = "installed_formulae"
SOURCE_INSTALLED_CASKS = "installed_casks"


@dataclass
class SourceResult:
    """Envelope reported by every producer: a payload or an error, never both."""

    tag: str
    payload: Any = None
    error: Optional[BaseException] = None


@dataclass
class SourceData:
    """Everything one aggregation cycle collected."""

    formulae: List[FormulaEntry]
    casks: List[CaskEntry]
    formula_analytics: AnalyticsFeed
    cask_analytics: AnalyticsFeed
    installed_formulae: List[InstallInfo]
    installed_casks: List[InstallInfo]


class Aggregator:
    def __init__(
        self,
        config: EngineConfig,
        fetcher: SourceFetcher,
        scanner: InstalledScanner,
        feeds: Optional[Dict[str, FeedSpec]] = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.scanner = scanner
        self.feeds = feeds or default_feeds(config)

    # ------------------------------------------------------------------
    # Fan-in
    # ------------------------------------------------------------------

    def _producers(self) -> Dict[str, Callable[[], Awaitable[Any]]]:
        producers: Dict[str, Callable[[], Awaitable[Any]]] = {
            SOURCE_FORMULAE: lambda: self.fetcher.fetch_formulae(self.feeds[SOURCE_FORMULAE]),
            SOURCE_CASKS: lambda: self.fetcher.fetch_casks(self.feeds[SOURCE_CASKS]),
            SOURCE_INSTALLED_FORMULAE: self.scanner.scan_formulae,
            SOURCE_INSTALLED_CASKS: self.scanner.scan_casks,
        }
        if self.config.fetch_analytics:
            producers[SOURCE_FORMULA_ANALYTICS] = lambda: self.fetcher.fetch_analytics(
                self.feeds[SOURCE_FORMULA_ANALYTICS]
            )
            producers[SOURCE_CASK_ANALYTICS] = lambda: self.fetcher.fetch_analytics(
                self.feeds[SOURCE_CASK_ANALYTICS]
            )
        return producers

    async def collect(self) -> SourceData:
        """
        Run every producer concurrently and wait for all of them.

        Raises AggregationError on the first failure; the remaining producers
        are cancelled.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def produce(tag: str, func: Callable[[], Awaitable[Any]]) -> None:
            try:
                await queue.put(SourceResult(tag, payload=await func()))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await queue.put(SourceResult(tag, error=e))

        producers = self._producers()
        tasks = [asyncio.create_task(produce(tag, func)) for tag, func in producers.items()]
        results: Dict[str, Any] = {}
        try:
            for _ in range(len(tasks)):
                result: SourceResult = await queue.get()
                if result.error is not None:
                    logger.error(f"Failed to load {result.tag}: {result.error}")
                    raise AggregationError(result.tag, result.error) from result.error
                logger.debug(f"Loaded {result.tag}")
                results[result.tag] = result.payload
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        return SourceData(
            formulae=results[SOURCE_FORMULAE],
            casks=results[SOURCE_CASKS],
            formula_analytics=results.get(SOURCE_FORMULA_ANALYTICS) or AnalyticsFeed(),
            cask_analytics=results.get(SOURCE_CASK_ANALYTICS) or AnalyticsFeed(),
            installed_formulae=results[SOURCE_INSTALLED_FORMULAE],
            installed_casks=results[SOURCE_INSTALLED_CASKS],
        )

    async def load(self) -> Catalog:
        """Run one full aggregation cycle and return the new catalog."""
        data = await self.collect()
        catalog = await self.build(data)
        # Cache invalidation only covers a single cycle.
        self.fetcher.cache.reset_invalidation()
        logger.info(f"Catalog built with {len(catalog)} packages")
        return catalog

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def build(self, data: SourceData) -> Catalog:
        formula_installs = data.formula_analytics.install_counts()
        cask_installs = data.cask_analytics.install_counts()
        installed_formulae = {info.name: info for info in data.installed_formulae}
        installed_casks = {info.name: info for info in data.installed_casks}
        feed_formulae = {f.name: f for f in data.formulae}

        formula_dependents: Dict[str, List[str]] = defaultdict(list)
        # Casks among the dependents of a formula.
        formula_cask_dependents: Dict[str, List[str]] = defaultdict(list)
        cask_dependents: Dict[str, List[str]] = defaultdict(list)
        packages: List[Package] = []

        # Local installs with no counterpart in the authoritative feed.
        local_only = [
            info for info in data.installed_formulae
            if not self._is_backed_by_feed(info, feed_formulae.get(info.name))
        ]
        for pkg in await self._local_packages(local_only, is_cask=False):
            pkg.installs_90d = formula_installs.get(pkg.name, 0)
            packages.append(pkg)
            for dep in pkg.dependencies:
                formula_dependents[dep].append(pkg.name)

        feed_casks = {c.token for c in data.casks}
        local_only_casks = [info for info in data.installed_casks if info.name not in feed_casks]
        for pkg in await self._local_packages(local_only_casks, is_cask=True):
            pkg.installs_90d = cask_installs.get(pkg.name, 0)
            packages.append(pkg)

        for f in data.formulae:
            inst = installed_formulae.get(f.name)
            if inst is not None and not self._is_backed_by_feed(inst, f):
                inst = None
            packages.append(package_from_formula(f, formula_installs.get(f.name, 0), inst))
            for dep in f.dependencies:
                formula_dependents[dep].append(f.name)

        for c in data.casks:
            packages.append(package_from_cask(c, cask_installs.get(c.token, 0), installed_casks.get(c.token)))
            for dep in c.depends_on.formula:
                formula_dependents[dep].append(c.token)
                formula_cask_dependents[dep].append(c.token)
            for dep in c.depends_on.cask:
                cask_dependents[dep].append(c.token)

        for pkg in packages:
            if pkg.is_cask:
                pkg.dependents = package_utils.sort_and_uniq(cask_dependents.get(pkg.name, []))
                pkg.cask_dependents = list(pkg.dependents)
            else:
                pkg.dependents = package_utils.sort_and_uniq(formula_dependents.get(pkg.name, []))
                pkg.cask_dependents = package_utils.sort_and_uniq(formula_cask_dependents.get(pkg.name, []))

        return Catalog(packages)

    def _is_backed_by_feed(self, info: InstallInfo, entry: Optional[FormulaEntry]) -> bool:
        """Whether a local formula install belongs to the feed entry of the same name."""
        if entry is None:
            return False
        return info.tap in ("", self.config.core_tap, entry.tap)

    async def _local_packages(self, infos: List[InstallInfo], is_cask: bool) -> List[Package]:
        async def load(info: InstallInfo) -> Optional[Package]:
            try:
                pkg = await load_formula_source(info.path, info.name, info.tap)
            except FormulaParseError as e:
                logger.warning(f"Failed to retrieve information for {info.tap}/{info.name}: {e}")
                return None
            pkg.is_cask = is_cask
            pkg.install_supported = True
            return apply_install_info(pkg, info)

        loaded = await asyncio.gather(*(load(info) for info in infos))
        return [pkg for pkg in loaded if pkg is not None]


# ---------------------------------------------------------------------------
# Package construction
# ---------------------------------------------------------------------------


def package_from_formula(f: FormulaEntry, installs_90d: int, inst: Optional[InstallInfo]) -> Package:
    pkg = Package(
        name=f.name,
        tap=f.tap,
        aliases=list(f.aliases),
        version=f.versions.stable,
        revision=f.revision,
        desc=f.desc,
        homepage=f.homepage,
        urls=f.url_list,
        license=f.license,
        dependencies=package_utils.sort_and_uniq(f.dependencies),
        build_dependencies=list(f.build_dependencies),
        conflicts=list(f.conflicts_with),
        installs_90d=installs_90d,
        is_deprecated=f.deprecated,
        is_disabled=f.disabled,
        install_supported=True,
        platforms=[Platform(os=o, arch=a) for o, a in package_utils.platforms_from_bottle_tags(f.bottle_tags)],
    )
    if inst is not None:
        apply_install_info(pkg, inst)
    return pkg


def package_from_cask(c: CaskEntry, installs_90d: int, inst: Optional[InstallInfo]) -> Package:
    pkg = Package(
        name=c.token,
        tap=c.tap,
        version=c.version,
        desc=c.desc,
        homepage=c.homepage,
        urls=[c.url] if c.url else [],
        license="N/A",
        dependencies=package_utils.sort_and_uniq(c.depends_on.formula + c.depends_on.cask),
        cask_dependencies=package_utils.sort_and_uniq(c.depends_on.cask),
        conflicts=package_utils.sort_and_uniq(c.conflicts_with.formula + c.conflicts_with.cask),
        installs_90d=installs_90d,
        is_cask=True,
        auto_update=c.auto_updates,
        is_deprecated=c.deprecated,
        is_disabled=c.disabled,
        # .pkg installers need sudo, which can't be driven from here.
        install_supported=not package_utils.strip_query(c.url).endswith(".pkg"),
        platforms=[Platform(os=o, arch=a) for o, a in package_utils.cask_platforms(c.variations.keys())],
        min_macos_version=package_utils.min_macos_version(c.depends_on.macos),
    )
    if inst is not None:
        apply_install_info(pkg, inst)
    return pkg


def apply_install_info(pkg: Package, inst: InstallInfo) -> Package:
    """Attach local install state and derive the outdated flag."""
    pkg.is_installed = True
    if pkg.is_cask and pkg.auto_update:
        # Self-updating casks are not managed by brew; assume up to date.
        pkg.installed_version = pkg.version
        pkg.installed_revision = pkg.revision
        pkg.is_outdated = False
    else:
        pkg.installed_version = inst.version
        pkg.installed_revision = inst.revision
        pkg.is_outdated = inst.version != pkg.version or inst.revision < pkg.revision
    pkg.is_pinned = inst.pinned
    pkg.installed_as_dependency = inst.installed_as_dependency
    pkg.size = inst.size
    if inst.timestamp:
        pkg.installed_date = datetime.fromtimestamp(inst.timestamp).date().isoformat()
    return pkg
