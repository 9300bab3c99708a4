"""
The merged, name-sorted package catalog and its dependency queries.
"""
from __future__ import annotations

import asyncio
import bisect
import logging
from typing import Iterator, List, Optional, Sequence, Tuple

from brewcatalog.domain.filters import FilterSet
from brewcatalog.domain.models import Package

logger = logging.getLogger(__name__)


# (name, is_cask): the node a dependency edge points at.
PackageKey = Tuple[str, bool]


def _sort_key(pkg: Package) -> tuple:
    # Formula sorts before a cask of the same name, an installed record before
    # a feed record it shadows.
    return (pkg.name, pkg.is_cask, not pkg.is_installed)


class Catalog:
    """
    Sorted collection of Package records built by one aggregation cycle.

    The order is fixed at construction and never changes afterwards; the
    reconciler only patches fields of existing records, under `lock`.

    (name, is_cask) is unique with one exception: a formula installed from a
    third-party tap that reuses a core formula name is kept next to the core
    feed record. Both are listed and searchable; lookups by name resolve to
    the installed record.
    """

    def __init__(self, packages: Sequence[Package]):
        self._packages: List[Package] = sorted(packages, key=_sort_key)
        self._names: List[str] = [p.name for p in self._packages]
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._packages)

    def __iter__(self) -> Iterator[Package]:
        return iter(self._packages)

    @property
    def packages(self) -> List[Package]:
        return list(self._packages)

    def get(self, name: str, cask: Optional[bool] = None) -> Optional[Package]:
        """
        Binary-search lookup by name.

        When `cask` is None the formula wins over a cask of the same name.
        """
        index = bisect.bisect_left(self._names, name)
        while index < len(self._names) and self._names[index] == name:
            pkg = self._packages[index]
            if cask is None or pkg.is_cask == cask:
                return pkg
            index += 1
        return None

    def outdated(self) -> List[Package]:
        return [p for p in self._packages if p.is_outdated]

    def installed(self) -> List[Package]:
        return [p for p in self._packages if p.is_installed]

    def search(self, keywords: Sequence[str] = (), filters: Optional[FilterSet] = None) -> List[Package]:
        """Packages matching every keyword and every enabled filter, in catalog order."""
        kws = [kw.lower() for kw in keywords if kw]
        result = []
        for pkg in self._packages:
            if kws and not pkg.match_keywords(kws):
                continue
            if filters is not None and not filters.matches(pkg):
                continue
            result.append(pkg)
        return result

    # ------------------------------------------------------------------
    # Dependency queries
    # ------------------------------------------------------------------

    def is_installed(self, name: str, cask: Optional[bool] = None) -> bool:
        pkg = self.get(name, cask)
        return pkg is not None and pkg.is_installed

    def missing_dependencies(self, name: str, cask: Optional[bool] = None) -> List[str]:
        """
        Names of the dependencies that installing `name` brings in.

        Empty when `name` is installed or unknown. Otherwise the direct
        dependencies plus, recursively, the dependencies of each of them. The
        walk continues through installed dependencies but only reports their
        dependencies that are themselves not installed.
        """
        return _names(self._closure(self.get(name, cask), "dependencies", expand_installed=False))

    def missing_dependency_packages(self, pkg: Package) -> List[Package]:
        """Known, not yet installed records among the missing dependencies of `pkg`."""
        found = (self.get(name, cask) for name, cask in self._closure(pkg, "dependencies", expand_installed=False))
        return [dep for dep in found if dep is not None and not dep.is_installed]

    def installed_dependents(self, name: str, cask: Optional[bool] = None) -> List[str]:
        """
        Names of the packages depending, directly or transitively, on `name`.

        Empty when `name` is not installed. The walk continues through
        dependents that are not installed but only reports their dependents
        that are installed.
        """
        return _names(self._closure(self.get(name, cask), "dependents", expand_installed=True))

    def _neighbours(self, pkg: Package, edge: str) -> List[PackageKey]:
        if edge == "dependencies":
            casks = set(pkg.cask_dependencies) if pkg.is_cask else set()
            return [(other, other in casks) for other in pkg.dependencies]

        casks = set(pkg.cask_dependents)
        keys: List[PackageKey] = []
        for other in pkg.dependents:
            if other in casks:
                keys.append((other, True))
                formula = self.get(other, cask=False)
                if formula is None or pkg.is_cask or pkg.name not in formula.dependencies:
                    continue
            keys.append((other, False))
        return keys

    def _closure(self, root: Optional[Package], edge: str, expand_installed: bool) -> List[PackageKey]:
        if root is None or root.is_installed != expand_installed:
            return []

        root_key = (root.name, root.is_cask)
        result: List[PackageKey] = []
        visited = {root_key}
        stack = [root]
        while stack:
            pkg = stack.pop()
            for key in self._neighbours(pkg, edge):
                if key == root_key:
                    continue
                if pkg.is_installed == expand_installed or self.is_installed(*key) == expand_installed:
                    if key not in result:
                        result.append(key)
                if key in visited:
                    continue
                visited.add(key)
                other_pkg = self.get(*key)
                if other_pkg is not None:
                    stack.append(other_pkg)
        return result


def _names(keys: List[PackageKey]) -> List[str]:
    names: List[str] = []
    for name, _ in keys:
        if name not in names:
            names.append(name)
    return names
