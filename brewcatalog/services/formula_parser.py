"""
Best-effort metadata extraction from formula source files of third-party taps.

Formula files are Ruby programs, not a stable data format, so this is a set of
independent patterns rather than a parser: every optional field fails soft,
only version, desc and homepage are required.
"""
from __future__ import annotations

import posixpath
import re
from pathlib import Path

import aiofiles

from brewcatalog.domain import package_utils
from brewcatalog.domain.errors import FormulaParseError
from brewcatalog.domain.models import Package

_VERSION_RE = re.compile(r"""version\s+["']([^"']+)["']""")
_TAG_RE = re.compile(r"""tag:\s+["']([^"']+)["']""")
_REVISION_RE = re.compile(r"revision\s+([0-9]+)")
_DESC_RE = re.compile(r"""desc\s+["']([^"']+)["']""")
_HOMEPAGE_RE = re.compile(r"""homepage\s+["']([^"']+)["']""")
_URL_RE = re.compile(r"""url\s+["']([^"']+)["']""")
_LICENSE_RE = re.compile(r"""license\s+["']([^"']+)["']""")
_DEPENDS_RE = re.compile(r"""depends_on\s+["']([^"']+)["'](?:\s*=>\s*(.*))?""")
_CONFLICTS_RE = re.compile(r"""conflicts_with\s+["']([^"']+)["']""")

_URL_VERSION_RE = re.compile(r"v?(\d+(?:\.\d+)+[a-zA-Z0-9\-\.]*)")
SOURCE_EXTENSIONS = (".tar.gz", ".tar.xz", ".tar.bz2", ".tgz", ".zip")

DISABLED_MARKER = "disable!"
DEPRECATED_MARKER = "deprecate!"


def normalize_version(version: str) -> str:
    return version[1:] if version.startswith("v") else version


def version_from_url(url: str) -> str:
    """
    Infer a version from a download URL's file name, e.g.
    ".../foo-1.2.3.tar.gz" -> "1.2.3". Returns "" when nothing matches.
    """
    base = posixpath.basename(url)
    for ext in SOURCE_EXTENSIONS:
        if base.endswith(ext):
            base = base[: -len(ext)]
            break
    match = _URL_VERSION_RE.search(base)
    if match:
        return normalize_version(match.group(1))
    return ""


def parse_formula_source(content: str, name: str, tap: str = "", source: str = "<formula>") -> Package:
    """
    Build a Package from the text of a formula file.

    Raises FormulaParseError when version, desc or homepage cannot be found.
    """
    pkg = Package(name=name, tap=tap)

    m = _VERSION_RE.search(content)
    if m:
        pkg.version = m.group(1)
    m = _TAG_RE.search(content)
    if m:
        pkg.version = normalize_version(m.group(1))

    m = _REVISION_RE.search(content)
    if m:
        pkg.revision = int(m.group(1))

    m = _DESC_RE.search(content)
    if m:
        pkg.desc = m.group(1)

    m = _HOMEPAGE_RE.search(content)
    if m:
        pkg.homepage = m.group(1)

    for m in _URL_RE.finditer(content):
        url = m.group(1)
        pkg.urls.append(url)
        if not pkg.version:
            pkg.version = version_from_url(url)

    m = _LICENSE_RE.search(content)
    if m:
        pkg.license = m.group(1)

    dependencies = []
    for m in _DEPENDS_RE.finditer(content):
        attrs = m.group(2) or ""
        if ":build" in attrs:
            pkg.build_dependencies.append(m.group(1))
        else:
            dependencies.append(m.group(1))
    pkg.dependencies = package_utils.sort_and_uniq(dependencies)

    pkg.conflicts = [m.group(1) for m in _CONFLICTS_RE.finditer(content)]

    pkg.is_disabled = DISABLED_MARKER in content
    pkg.is_deprecated = DEPRECATED_MARKER in content

    if not pkg.version:
        raise FormulaParseError(f"no version found in {source}")
    if not pkg.desc:
        raise FormulaParseError(f"no desc found in {source}")
    if not pkg.homepage:
        raise FormulaParseError(f"no homepage found in {source}")
    return pkg


async def load_formula_source(path: str, name: str, tap: str = "") -> Package:
    """
    Read and parse a formula file (typically under Library/Taps/).

    Raises FormulaParseError when the file is missing or unreadable.
    """
    if not path:
        raise FormulaParseError(f"no formula source recorded for {tap}/{name}")
    try:
        async with aiofiles.open(Path(path), "r", encoding="utf-8") as f:
            content = await f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FormulaParseError(f"can't read {path}: {e}") from e
    return parse_formula_source(content, name, tap, source=path)
