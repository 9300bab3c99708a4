"""
Package filters packed into a single bitmask.

Filters are partitioned into mutually exclusive groups: at most one filter
from each group may be active. Filters from different groups combine with AND.
"""
from __future__ import annotations

import enum
from typing import Iterable, List

from brewcatalog.domain.errors import FilterConflictError, UnknownFilterError
from brewcatalog.domain.models import Package


class Filter(enum.IntFlag):
    FORMULAE = 1 << 0
    CASKS = 1 << 1
    INSTALLED = 1 << 2
    OUTDATED = 1 << 3
    EXPLICITLY_INSTALLED = 1 << 4
    ACTIVE = 1 << 5

    @property
    def label(self) -> str:
        return _LABELS.get(self, "Unknown")

    def matches(self, pkg: Package) -> bool:
        if self is Filter.FORMULAE:
            return not pkg.is_cask
        if self is Filter.CASKS:
            return pkg.is_cask
        if self is Filter.INSTALLED:
            return pkg.is_installed
        if self is Filter.OUTDATED:
            return pkg.is_outdated
        if self is Filter.EXPLICITLY_INSTALLED:
            return pkg.is_installed and not pkg.installed_as_dependency
        if self is Filter.ACTIVE:
            return not pkg.is_disabled and not pkg.is_deprecated
        return False


_LABELS = {
    Filter.FORMULAE: "Formulae",
    Filter.CASKS: "Casks",
    Filter.INSTALLED: "Installed",
    Filter.OUTDATED: "Outdated",
    Filter.EXPLICITLY_INSTALLED: "Expl. Installed",
    Filter.ACTIVE: "Active",
}
_BY_LABEL = {label: f for f, label in _LABELS.items()}

# Single-bit filters in bit-position order.
ALL_FILTERS: List[Filter] = sorted(_LABELS, key=int)

CONFLICT_GROUPS: List[int] = [
    int(Filter.FORMULAE | Filter.CASKS),
    int(Filter.INSTALLED | Filter.OUTDATED | Filter.EXPLICITLY_INSTALLED | Filter.ACTIVE),
]


def parse_filter(name: str) -> Filter:
    try:
        return _BY_LABEL[name]
    except KeyError:
        raise UnknownFilterError(name) from None


def _conflict_group(f: Filter) -> int:
    for group in CONFLICT_GROUPS:
        if group & f:
            return group
    return 0


def _members(mask: int) -> List[Filter]:
    return [f for f in ALL_FILTERS if mask & f]


class FilterSet:
    """
    A mutable set of enabled filters.

    Enabling a filter first clears every other filter of its group, so the set
    can never hold two conflicting filters.
    """

    def __init__(self, mask: int = 0):
        self.mask = int(mask)

    @classmethod
    def parse(cls, names: Iterable[str]) -> "FilterSet":
        """
        Build a filter set from filter labels.

        Raises UnknownFilterError for an unknown label and FilterConflictError
        when two labels belong to the same group.
        """
        mask = 0
        for name in names:
            mask |= int(parse_filter(name))

        for group in CONFLICT_GROUPS:
            in_group = mask & group
            if bin(in_group).count("1") > 1:
                raise FilterConflictError(
                    [f.label for f in _members(in_group)],
                    [f.label for f in _members(group)],
                )
        return cls(mask)

    def is_enabled(self, f: Filter) -> bool:
        return bool(self.mask & f)

    def enable(self, f: Filter) -> "FilterSet":
        self.mask &= ~_conflict_group(f)
        self.mask |= int(f)
        return self

    def disable(self, f: Filter) -> "FilterSet":
        self.mask &= ~int(f)
        return self

    def toggle(self, f: Filter) -> "FilterSet":
        if self.is_enabled(f):
            return self.disable(f)
        return self.enable(f)

    def reset(self) -> "FilterSet":
        self.mask = 0
        return self

    def split(self) -> List[Filter]:
        return _members(self.mask)

    def names(self) -> List[str]:
        return [f.label for f in self.split()]

    def matches(self, pkg: Package) -> bool:
        return all(f.matches(pkg) for f in self.split())

    def apply(self, packages: Iterable[Package]) -> List[Package]:
        filters = self.split()
        return [pkg for pkg in packages if all(f.matches(pkg) for f in filters)]

    def __bool__(self) -> bool:
        return self.mask != 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FilterSet):
            return self.mask == other.mask
        return NotImplemented

    def __str__(self) -> str:
        if not self.mask:
            return "None"
        return " & ".join(self.names())

    def __repr__(self) -> str:
        return f"FilterSet({str(self)!r})"
