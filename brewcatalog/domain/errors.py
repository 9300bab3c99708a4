"""
Exception types raised by the catalog engine.

Source errors abort an aggregation cycle; local-scan problems never surface
here because the scanner recovers from them per entry.
"""
from __future__ import annotations

from typing import List, Optional, Sequence


class CatalogError(Exception):
    """Base class for all catalog engine errors."""


# ---------------------------------------------------------------------------
# Remote sources
# ---------------------------------------------------------------------------


class SourceError(CatalogError):
    """A remote feed could not be turned into usable data."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class SourceNetworkError(SourceError):
    pass


class SourceStatusError(SourceError):
    def __init__(self, url: str, status_code: int, reason: str = ""):
        super().__init__(url, f"bad HTTP status fetching {url}: {status_code} {reason}".rstrip())
        self.status_code = status_code


class SourceDecodeError(SourceError):
    pass


class AggregationError(CatalogError):
    """An aggregation cycle was aborted; no catalog was published."""

    def __init__(self, source: str, cause: BaseException):
        super().__init__(f"failed to load {source}: {cause}")
        self.source = source
        self.cause = cause


class FormulaParseError(CatalogError):
    """A declarative formula file lacks a required field."""


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class FilterError(CatalogError, ValueError):
    pass


class UnknownFilterError(FilterError):
    def __init__(self, name: str):
        super().__init__(f"Unknown filter: {name}")
        self.name = name


class FilterConflictError(FilterError):
    def __init__(self, members: Sequence[str], group: Sequence[str]):
        super().__init__(
            f"Conflicting filters: {' & '.join(members)} (pick at most one of: {', '.join(group)})"
        )
        self.members = list(members)
        self.group = list(group)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CommandError(CatalogError):
    """A mutating command did not complete successfully."""

    def __init__(self, message: str, output: Optional[List[str]] = None):
        super().__init__(message)
        self.output = list(output or [])


class CommandNotSupportedError(CommandError):
    pass


class CommandSpawnError(CommandError):
    pass


class CommandFailedError(CommandError):
    def __init__(self, command_line: str, returncode: int, output: Optional[List[str]] = None):
        super().__init__(f"'{command_line}' exited with status {returncode}", output)
        self.returncode = returncode


# ---------------------------------------------------------------------------
# Catalog access
# ---------------------------------------------------------------------------


class CatalogNotLoadedError(CatalogError):
    pass


class PackageNotFoundError(CatalogError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Package not found: {name}")
        self.name = name
