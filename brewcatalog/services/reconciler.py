"""
Patch catalog records after a mutating command succeeded.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from brewcatalog.domain.catalog import Catalog
from brewcatalog.domain.models import Package
from brewcatalog.services.executor import CommandType

logger = logging.getLogger(__name__)

SizeProbe = Callable[[str, bool], Awaitable[int]]


class Reconciler:
    """
    Applies the effect of a finished command to the catalog in place, so the
    catalog stays current without a full aggregation cycle.

    Only the named records (and, for installs, their newly pulled-in
    dependencies) are touched. All patches run under the catalog lock.
    """

    def __init__(self, catalog: Catalog, size_probe: Optional[SizeProbe] = None):
        self.catalog = catalog
        self.size_probe = size_probe

    async def apply(self, command: CommandType, packages: Sequence[Package]) -> List[Package]:
        """Patch the catalog for `command`; returns every record that changed."""
        async with self.catalog.lock:
            if command in (CommandType.UPGRADE, CommandType.UPGRADE_ALL):
                changed = await self._upgrade(packages)
            elif command is CommandType.INSTALL:
                changed = await self._install(packages)
            elif command is CommandType.UNINSTALL:
                changed = self._uninstall(packages)
            elif command is CommandType.PIN:
                for pkg in packages:
                    pkg.mark_pinned()
                changed = list(packages)
            elif command is CommandType.UNPIN:
                for pkg in packages:
                    pkg.mark_unpinned()
                changed = list(packages)
            else:
                changed = []
        if changed:
            logger.info(f"Updated {len(changed)} package(s) after {command.value}")
        return changed

    async def _upgrade(self, packages: Sequence[Package]) -> List[Package]:
        for pkg in packages:
            pkg.mark_installed()
            await self._measure(pkg)
        return list(packages)

    async def _install(self, packages: Sequence[Package]) -> List[Package]:
        changed: List[Package] = []
        for pkg in packages:
            # Resolve before marking, an installed package has no missing dependencies.
            missing = self.catalog.missing_dependency_packages(pkg)
            pkg.mark_installed()
            await self._measure(pkg)
            changed.append(pkg)
            for dep in missing:
                dep.mark_installed_as_dependency()
                await self._measure(dep)
                changed.append(dep)
        return changed

    def _uninstall(self, packages: Sequence[Package]) -> List[Package]:
        for pkg in packages:
            pkg.mark_uninstalled()
        return list(packages)

    async def _measure(self, pkg: Package) -> None:
        if self.size_probe is not None:
            pkg.size = await self.size_probe(pkg.name, pkg.is_cask)
