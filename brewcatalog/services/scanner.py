"""
Enumerate locally installed formulae and casks.

Every entry of an installation root is inspected by its own task; results
come back through a bounded queue. A failing entry is logged and skipped, it
never aborts the scan.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from brewcatalog.domain import package_utils
from brewcatalog.domain.models import InstallInfo, InstallReceipt

logger = logging.getLogger(__name__)

RECEIPT_FILENAME = "INSTALL_RECEIPT.json"
CASK_METADATA_DIR = ".metadata"
RESULT_QUEUE_SIZE = 16


def _is_hidden(name: str) -> bool:
    return not name or name.startswith(".")


async def _list_dir(path: Path) -> List[os.DirEntry]:
    with await aiofiles.os.scandir(path) as it:
        return sorted(it, key=lambda entry: entry.name)


async def read_receipt(path: Path) -> Optional[InstallReceipt]:
    """Parse an INSTALL_RECEIPT.json, or None when it is missing or malformed."""
    try:
        async with aiofiles.open(path, "rb") as f:
            raw = await f.read()
    except OSError:
        logger.debug(f"No install receipt at {path}")
        return None
    try:
        return InstallReceipt.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Failed to parse install receipt {path}: {e}")
        return None


class InstalledScanner:
    """
    Scans <prefix>/Cellar (formulae) and <prefix>/Caskroom (casks).

    Size measurement runs `du` once per package and is therefore opt-in.
    """

    def __init__(self, prefix: Path, fetch_size: bool = False, du_executable: str = "du"):
        self.prefix = Path(prefix)
        self.fetch_size = fetch_size
        self.du_executable = du_executable

    @property
    def cellar(self) -> Path:
        return self.prefix / "Cellar"

    @property
    def caskroom(self) -> Path:
        return self.prefix / "Caskroom"

    @property
    def pinned_dir(self) -> Path:
        return self.prefix / "var" / "homebrew" / "pinned"

    # ------------------------------------------------------------------
    # Public scans
    # ------------------------------------------------------------------

    async def scan_formulae(self) -> List[InstallInfo]:
        pinned = await self.load_pinned()
        infos = await self._scan(self.cellar, self.formula_install_info)
        for info in infos:
            info.pinned = info.name in pinned
        return infos

    async def scan_casks(self) -> List[InstallInfo]:
        # Casks can not be pinned.
        return await self._scan(self.caskroom, self.cask_install_info)

    async def load_pinned(self) -> Set[str]:
        try:
            entries = await _list_dir(self.pinned_dir)
        except OSError:
            return set()
        return {entry.name for entry in entries if not _is_hidden(entry.name)}

    async def package_size(self, name: str, is_cask: bool) -> int:
        """On-disk size in KB of an installed package, 0 when unknown."""
        if is_cask:
            return await self.measure_size(self.caskroom / name, follow_symlinks=True)
        return await self.measure_size(self.cellar / name, follow_symlinks=False)

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    async def _scan(
        self,
        root: Path,
        unit: Callable[[Path], Awaitable[Optional[InstallInfo]]],
    ) -> List[InstallInfo]:
        try:
            entries = await _list_dir(root)
        except OSError as e:
            logger.warning(f"Failed to read dir {root}: {e}")
            return []

        paths = [
            root / entry.name
            for entry in entries
            if not _is_hidden(entry.name) and not entry.is_symlink()
        ]

        results: asyncio.Queue = asyncio.Queue(maxsize=RESULT_QUEUE_SIZE)

        async def run(path: Path) -> None:
            try:
                info = await unit(path)
            except Exception as e:
                logger.warning(f"Failed to get install info from {path}: {e}", exc_info=True)
                info = None
            await results.put(info)

        tasks = [asyncio.create_task(run(path)) for path in paths]
        infos: List[InstallInfo] = []
        try:
            for _ in range(len(tasks)):
                info = await results.get()
                if info is not None:
                    infos.append(info)
        finally:
            for task in tasks:
                task.cancel()
        infos.sort(key=lambda i: i.name)
        return infos

    # ------------------------------------------------------------------
    # Per-entry units
    # ------------------------------------------------------------------

    async def formula_install_info(self, path: Path) -> Optional[InstallInfo]:
        """
        Expected layout: Cellar/<name>/<version>[_<revision>]/INSTALL_RECEIPT.json
        """
        name = path.name
        subdirs = [e.name for e in await _list_dir(path) if not _is_hidden(e.name)]
        if not subdirs:
            logger.warning(f"No version directory found in {path}")
            return None

        # Expect only one subdirectory, whose name is the formula version.
        version_dir = path / subdirs[0]
        version, revision = package_utils.split_version_revision(subdirs[0])
        info = InstallInfo(name=name, version=version, revision=revision)

        receipt = await read_receipt(version_dir / RECEIPT_FILENAME)
        if receipt is not None:
            info.version = receipt.source.versions.stable or version
            info.tap = receipt.source.tap
            info.path = receipt.source.path
            info.timestamp = receipt.time
            info.installed_as_dependency = receipt.installed_as_dependency

        if self.fetch_size:
            info.size = await self.measure_size(version_dir, follow_symlinks=False)
        return info

    async def cask_install_info(self, path: Path) -> Optional[InstallInfo]:
        """
        Expected layout: Caskroom/<name>/<version>/ plus
        Caskroom/<name>/.metadata/INSTALL_RECEIPT.json
        """
        info = InstallInfo(name=path.name)

        subdirs = [e.name for e in await _list_dir(path) if not _is_hidden(e.name)]
        if subdirs:
            # The directory name is more up to date than the receipt's version.
            info.version = subdirs[0]
            try:
                stat = await aiofiles.os.stat(path / subdirs[0])
                info.timestamp = int(stat.st_mtime)
            except OSError as e:
                logger.warning(f"Failed to get cask install time for {path}: {e}")
        else:
            logger.warning(f"No version directory found in {path}")

        receipt = await read_receipt(path / CASK_METADATA_DIR / RECEIPT_FILENAME)
        if receipt is not None:
            info.tap = receipt.source.tap
            info.path = receipt.source.path
            info.installed_as_dependency = receipt.installed_as_dependency
            if not info.version:
                info.version = receipt.source.version

        if self.fetch_size:
            info.size = await self.measure_size(path, follow_symlinks=True)
        return info

    async def measure_size(self, path: Path, follow_symlinks: bool) -> int:
        """
        Run `du -k -s [-L] <path>` and return the size in KB, 0 on any failure.
        """
        args = ["-k", "-s"]
        if follow_symlinks:
            args.append("-L")
        args.append(str(path))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.du_executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await proc.communicate()
        except OSError as e:
            logger.debug(f"Failed to run {self.du_executable} on {path}: {e}")
            return 0

        fields = stdout.decode(errors="replace").split()
        if proc.returncode != 0 or len(fields) < 2:
            return 0
        try:
            return int(fields[0])
        except ValueError:
            return 0
