"""
Pydantic models for the package catalog engine.

This module defines all data models used throughout the application, including:
- Engine configuration
- Upstream feed payloads (formula catalog, cask catalog, analytics)
- Local installation records produced by the scanner
- The merged Package record held by the catalog

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from brewcatalog.domain import package_utils


# ---------------------------------------------------------------------------
# Engine Configuration
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """
    Top-level configuration for the catalog engine.

    Persisted at: <DATA_DIR>/catalog.json
    """

    brew_executable: str = Field(
        default="brew",
        description="Executable used for mutating commands and prefix discovery.",
    )
    brew_prefix: Optional[str] = Field(
        default=None,
        description="Installation prefix. None means ask `brew --prefix` at startup.",
    )
    cache_dir: Optional[str] = Field(
        default=None,
        description="Directory holding raw feed payloads. None means ~/.cache/brewcatalog.",
    )
    cache_ttl_seconds: int = Field(
        default=6 * 3600,
        ge=60,
        description="How long (in seconds) a cached feed payload stays fresh. Minimum: 60 seconds.",
    )
    invalidate_cache: bool = Field(
        default=False,
        description="If True, the first aggregation cycle bypasses the cache.",
    )
    fetch_analytics: bool = Field(
        default=True,
        description="Download the 90-day install analytics feeds.",
    )
    fetch_size: bool = Field(
        default=False,
        description="Measure on-disk size of installed packages (runs `du` per package).",
    )
    fetch_release_info: bool = Field(
        default=False,
        description="Look up the latest upstream release for installed packages.",
    )
    http_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for feed downloads.",
    )
    core_tap: str = Field(
        default="homebrew/core",
        description="The authoritative tap; installs from any other tap use fallback metadata.",
    )
    formula_url: str = Field(default="https://formulae.brew.sh/api/formula.jws.json")
    cask_url: str = Field(default="https://formulae.brew.sh/api/cask.jws.json")
    formula_analytics_url: str = Field(
        default="https://formulae.brew.sh/api/analytics/install-on-request/90d.json"
    )
    cask_analytics_url: str = Field(
        default="https://formulae.brew.sh/api/analytics/cask-install/90d.json"
    )
    default_filters: List[str] = Field(
        default_factory=list,
        description="Filter names applied by default (e.g. ['Formulae', 'Installed']).",
    )
    log_level: str = Field(default="INFO")


# ---------------------------------------------------------------------------
# Upstream Feed Models
# ---------------------------------------------------------------------------


class _FeedModel(BaseModel):
    """Base for upstream payload models: tolerate unknown keys and nulls."""

    model_config = ConfigDict(extra="ignore")


class FormulaVersions(_FeedModel):
    stable: str = ""

    @field_validator("stable", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class FormulaUrl(_FeedModel):
    url: str = ""


class FormulaUrls(_FeedModel):
    stable: Optional[FormulaUrl] = None
    head: Optional[FormulaUrl] = None


class FormulaBottleSpec(_FeedModel):
    files: Dict[str, Any] = Field(default_factory=dict)


class FormulaBottle(_FeedModel):
    stable: Optional[FormulaBottleSpec] = None


class FormulaEntry(_FeedModel):
    """One entry of the formula catalog feed."""

    name: str
    tap: str = ""
    desc: str = ""
    versions: FormulaVersions = Field(default_factory=FormulaVersions)
    revision: int = 0
    homepage: str = ""
    urls: FormulaUrls = Field(default_factory=FormulaUrls)
    license: str = ""
    aliases: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    build_dependencies: List[str] = Field(default_factory=list)
    conflicts_with: List[str] = Field(default_factory=list)
    deprecated: bool = False
    disabled: bool = False
    bottle: FormulaBottle = Field(default_factory=FormulaBottle)

    @field_validator("tap", "desc", "homepage", "license", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("aliases", "dependencies", "build_dependencies", "conflicts_with", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("bottle", "urls", "versions", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def url_list(self) -> List[str]:
        return [u.url for u in (self.urls.stable, self.urls.head) if u is not None and u.url]

    @property
    def bottle_tags(self) -> List[str]:
        if self.bottle.stable is None:
            return []
        return list(self.bottle.stable.files.keys())


class CaskDependsOn(_FeedModel):
    formula: List[str] = Field(default_factory=list)
    cask: List[str] = Field(default_factory=list)
    macos: Optional[Dict[str, Any]] = None


class CaskConflicts(_FeedModel):
    formula: List[str] = Field(default_factory=list)
    cask: List[str] = Field(default_factory=list)


class CaskEntry(_FeedModel):
    """One entry of the cask catalog feed."""

    token: str
    tap: str = ""
    desc: str = ""
    version: str = ""
    homepage: str = ""
    url: str = ""
    depends_on: CaskDependsOn = Field(default_factory=CaskDependsOn)
    conflicts_with: CaskConflicts = Field(default_factory=CaskConflicts)
    auto_updates: bool = False
    deprecated: bool = False
    disabled: bool = False
    variations: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tap", "desc", "version", "homepage", "url", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @field_validator("depends_on", "conflicts_with", "variations", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("auto_updates", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v


class AnalyticsItem(_FeedModel):
    formula: Optional[str] = None
    cask: Optional[str] = None
    count: str = "0"

    @field_validator("count", mode="before")
    @classmethod
    def _count_to_str(cls, v: Any) -> Any:
        return "0" if v is None else str(v)

    @property
    def name(self) -> str:
        return self.formula or self.cask or ""


class AnalyticsFeed(_FeedModel):
    """A 90-day analytics feed: {"items": [{"formula"|"cask": name, "count": "1,234"}]}."""

    items: List[AnalyticsItem] = Field(default_factory=list)

    def install_counts(self) -> Dict[str, int]:
        return {item.name: package_utils.parse_install_count(item.count) for item in self.items}


# ---------------------------------------------------------------------------
# Local Installation Models
# ---------------------------------------------------------------------------


class ReceiptSource(_FeedModel):
    version: str = ""
    versions: FormulaVersions = Field(default_factory=FormulaVersions)
    tap: str = ""
    path: str = ""

    @field_validator("version", "tap", "path", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("versions", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v


class InstallReceipt(_FeedModel):
    """Parsed INSTALL_RECEIPT.json written by the package manager at install time."""

    installed_as_dependency: bool = False
    time: int = 0
    source: ReceiptSource = Field(default_factory=ReceiptSource)

    @field_validator("installed_as_dependency", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("time", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("source", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v


class InstallInfo(BaseModel):
    """One locally installed item, as reported by the scanner."""

    name: str
    tap: str = ""
    version: str = ""
    revision: int = 0
    installed_as_dependency: bool = False
    pinned: bool = False
    timestamp: int = 0
    size: int = Field(default=0, description="On-disk size in KB (0 when not measured).")
    path: str = Field(default="", description="Path to the declarative source file, if known.")


# ---------------------------------------------------------------------------
# Catalog Models
# ---------------------------------------------------------------------------


class ReleaseInfo(BaseModel):
    """Latest upstream release of a package."""

    date: Optional[datetime] = None
    version: str
    url: str = ""


class Platform(BaseModel):
    """A supported OS and architecture combination."""

    model_config = ConfigDict(frozen=True)

    os: str = Field(description="'macOS' or 'Linux'.")
    arch: str = Field(description="'arm64' or 'x86_64'.")


STATUS_DISABLED = "Disabled"
STATUS_DEPRECATED = "Deprecated"
STATUS_PINNED = "Pinned"
STATUS_OUTDATED = "Outdated"
STATUS_INSTALLED_AS_DEP = "Installed (Dep)"
STATUS_INSTALLED = "Installed"
STATUS_UNINSTALLED = "Uninstalled"

KEYWORD_NEGATION = "-"
KEYWORD_PREFIX_NAME = "n:"
KEYWORD_PREFIX_DESC = "d:"
KEYWORD_PREFIX_TAP = "t:"
KEYWORD_PREFIX_HOMEPAGE = "h:"


class Package(BaseModel):
    """
    Combined information for one formula or cask.

    Identity is (name, is_cask). Install-state fields are only meaningful when
    is_installed is True. `dependents` is filled in by the aggregator after all
    sources have been merged.
    """

    name: str
    tap: str = ""
    aliases: List[str] = Field(default_factory=list)
    version: str = ""
    revision: int = 0
    installed_version: str = ""
    installed_revision: int = 0
    desc: str = ""
    homepage: str = ""
    urls: List[str] = Field(default_factory=list)
    license: str = ""
    dependencies: List[str] = Field(default_factory=list)
    build_dependencies: List[str] = Field(default_factory=list)
    dependents: List[str] = Field(default_factory=list)
    cask_dependencies: List[str] = Field(default_factory=list, description="Entries of `dependencies` that name casks.")
    cask_dependents: List[str] = Field(default_factory=list, description="Entries of `dependents` that name casks.")
    conflicts: List[str] = Field(default_factory=list)
    installs_90d: int = 0
    auto_update: bool = False
    is_cask: bool = False
    is_installed: bool = False
    is_outdated: bool = False
    is_pinned: bool = False
    is_deprecated: bool = False
    is_disabled: bool = False
    installed_as_dependency: bool = False
    install_supported: bool = True
    size: int = Field(default=0, description="Size in KB.")
    installed_date: str = ""
    release_info: Optional[ReleaseInfo] = None
    platforms: List[Platform] = Field(default_factory=list)
    min_macos_version: Optional[str] = None

    # -- Display helpers ----------------------------------------------------

    @property
    def status(self) -> str:
        if self.is_disabled:
            return STATUS_DISABLED
        if self.is_deprecated:
            return STATUS_DEPRECATED
        if self.is_pinned:
            return STATUS_PINNED
        if self.is_outdated:
            return STATUS_OUTDATED
        if self.installed_as_dependency:
            return STATUS_INSTALLED_AS_DEP
        if self.is_installed:
            return STATUS_INSTALLED
        return STATUS_UNINSTALLED

    @property
    def formatted_size(self) -> str:
        return package_utils.format_size(self.size)

    @property
    def brew_url(self) -> str:
        kind = "cask" if self.is_cask else "formula"
        return f"https://formulae.brew.sh/{kind}/{self.name}"

    def _version_with_rev(self) -> str:
        return package_utils.version_with_revision(self.version, self.revision)

    def _installed_version_with_rev(self) -> str:
        return package_utils.version_with_revision(self.installed_version, self.installed_revision)

    @property
    def short_version(self) -> str:
        if self.is_outdated:
            return f"{self._version_with_rev()} (New)"
        if self.is_pinned:
            return f"{self._installed_version_with_rev()} (Pin)"
        return self._version_with_rev()

    @property
    def long_version(self) -> str:
        if self.is_outdated:
            return f"{self._installed_version_with_rev()} -> {self._version_with_rev()}"
        if self.is_pinned:
            return f"{self._installed_version_with_rev()} (Pinned)"
        return self._version_with_rev()

    def supports_platform(self, os_name: str, arch: str) -> bool:
        """Packages without platform data are assumed to run anywhere."""
        if not self.platforms:
            return True
        return Platform(os=os_name, arch=arch) in self.platforms

    # -- State mutators (used by the reconciler) ----------------------------

    def mark_installed(self) -> None:
        self.is_installed = True
        self.is_outdated = False
        self.installed_version = self.version
        self.installed_revision = self.revision
        self.installed_date = date.today().isoformat()

    def mark_installed_as_dependency(self) -> None:
        self.mark_installed()
        self.installed_as_dependency = True

    def mark_uninstalled(self) -> None:
        self.is_installed = False
        self.installed_version = ""
        self.installed_revision = 0
        self.is_outdated = False
        self.is_pinned = False
        self.installed_as_dependency = False
        self.installed_date = ""
        self.size = 0

    def mark_pinned(self) -> None:
        self.is_pinned = True

    def mark_unpinned(self) -> None:
        self.is_pinned = False

    # -- Keyword search -----------------------------------------------------

    def match_keywords(self, keywords: List[str]) -> bool:
        """
        Test whether the package matches every keyword.

        A keyword prefixed with '-' must NOT match. Keywords may be scoped to a
        field with 'n:' (name and aliases), 'd:' (description), 't:' (tap) or
        'h:' (homepage); unscoped keywords match name or description.
        """
        for kw in keywords:
            kw = kw.lower()
            if kw.startswith(KEYWORD_NEGATION):
                if self._match_keyword(kw[len(KEYWORD_NEGATION):]):
                    return False
            elif not self._match_keyword(kw):
                return False
        return True

    def _match_keyword(self, kw: str) -> bool:
        if kw.startswith(KEYWORD_PREFIX_NAME):
            return self._match_name(kw[len(KEYWORD_PREFIX_NAME):])
        if kw.startswith(KEYWORD_PREFIX_DESC):
            return kw[len(KEYWORD_PREFIX_DESC):] in self.desc.lower()
        if kw.startswith(KEYWORD_PREFIX_TAP):
            return kw[len(KEYWORD_PREFIX_TAP):] in self.tap.lower()
        if kw.startswith(KEYWORD_PREFIX_HOMEPAGE):
            return kw[len(KEYWORD_PREFIX_HOMEPAGE):] in self.homepage.lower()
        return self._match_name(kw) or kw in self.desc.lower()

    def _match_name(self, kw: str) -> bool:
        if kw in self.name.lower():
            return True
        return any(kw in alias.lower() for alias in self.aliases)
