import re
from typing import Iterable, List, Optional, Tuple

# Sizes are measured in KB.
_SIZE_UNITS = [("GB", 1 << 20), ("MB", 1 << 10), ("KB", 1)]

_MACOS = "macOS"
_LINUX = "Linux"
_ARM64 = "arm64"
_X86_64 = "x86_64"
ALL_PLATFORMS: List[Tuple[str, str]] = [
    (_MACOS, _ARM64),
    (_MACOS, _X86_64),
    (_LINUX, _ARM64),
    (_LINUX, _X86_64),
]


def sort_and_uniq(values: Iterable[str]) -> List[str]:
    """
    Return the values sorted with duplicates and empty strings removed.
    """
    return sorted({v for v in values if v})


def parse_install_count(value: Optional[str]) -> int:
    """
    Parse an analytics count such as "1,234". Unparsable values count as 0.
    """
    if not value:
        return 0
    try:
        return int(str(value).replace(",", "").strip())
    except ValueError:
        return 0


def format_size(kbs: int) -> str:
    """
    Format a size in KB as e.g. "24.5MB", "230KB" or "1GB".
    """
    for unit, multiplier in _SIZE_UNITS:
        if kbs >= multiplier:
            value = kbs / multiplier
            if value == int(value):
                return f"{value:.0f}{unit}"
            return f"{value:.1f}{unit}"
    return "0"


def version_with_revision(version: str, revision: int) -> str:
    if revision > 0:
        return f"{version}_{revision}"
    return version


def split_version_revision(dirname: str) -> Tuple[str, int]:
    """
    Split an installed version directory name like "1.0.0_2" into ("1.0.0", 2).

    Names without a numeric "_N" suffix have revision 0.
    """
    match = re.fullmatch(r"(.+)_(\d+)", dirname)
    if match:
        return match.group(1), int(match.group(2))
    return dirname, 0


def platforms_from_bottle_tags(tags: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Map bottle tags to (os, arch) pairs.

    "arm64_sonoma" -> macOS/arm64, "sonoma" -> macOS/x86_64,
    "x86_64_linux" -> Linux/x86_64, "arm64_linux" -> Linux/arm64,
    "all" -> every platform.
    """
    found = set()
    for tag in tags:
        if tag == "all":
            return list(ALL_PLATFORMS)
        if tag.endswith("_linux"):
            found.add((_LINUX, _ARM64 if tag.startswith(_ARM64) else _X86_64))
        elif tag.startswith(f"{_ARM64}_"):
            found.add((_MACOS, _ARM64))
        else:
            found.add((_MACOS, _X86_64))
    return [p for p in ALL_PLATFORMS if p in found]


def cask_platforms(variation_tags: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Casks only run on macOS. When every variation is arm64-specific the cask
    is treated as arm64-only.
    """
    tags = list(variation_tags)
    if tags and all(t.startswith(f"{_ARM64}_") for t in tags):
        return [(_MACOS, _ARM64)]
    return [(_MACOS, _ARM64), (_MACOS, _X86_64)]


def min_macos_version(requirement: Optional[dict]) -> Optional[str]:
    """
    Extract the minimum macOS version from a cask's depends_on.macos,
    e.g. {">=": ["10.15"]} -> "10.15".
    """
    if not requirement:
        return None
    versions = requirement.get(">=")
    if isinstance(versions, list) and versions:
        return str(versions[0])
    if isinstance(versions, str):
        return versions
    return None


def strip_query(url: str) -> str:
    index = url.find("?")
    return url if index == -1 else url[:index]
