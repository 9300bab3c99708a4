"""
Latest upstream release lookup for packages hosted on GitHub.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Iterable, Optional, Tuple

import httpx

from brewcatalog.domain.models import Package, ReleaseInfo

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_REPO_URL_RE = re.compile(r"^https://github\.com/([^/\s]+)/([^/.\s]+)")
_PAGE_URL_RE = re.compile(r"^https://([^.\s]+)\.github\.io/([^/\s]+)")

# Concurrent requests against the API.
MAX_CONCURRENT_LOOKUPS = 4


def github_repo(pkg: Package) -> Optional[Tuple[str, str]]:
    """
    (owner, repo) for a package: the first download URL on github.com, else
    a github.com or github.io homepage.
    """
    for url in pkg.urls:
        m = _REPO_URL_RE.match(url)
        if m:
            return m.group(1), m.group(2)
    m = _REPO_URL_RE.match(pkg.homepage) or _PAGE_URL_RE.match(pkg.homepage)
    if m:
        return m.group(1), m.group(2)
    return None


class ReleaseInfoFetcher:
    def __init__(
        self,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timeout: float = 30.0,
    ):
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(
                follow_redirects=True,
                timeout=timeout,
                headers={"Accept": "application/vnd.github+json"},
            )
        )

    async def latest_release(self, client: httpx.AsyncClient, owner: str, repo: str) -> Optional[ReleaseInfo]:
        url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/releases/latest"
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Failed to get release info for {owner}/{repo}: {e}")
            return None
        if response.status_code != httpx.codes.OK:
            logger.debug(f"Failed to get release info for {owner}/{repo}: HTTP {response.status_code}")
            return None

        try:
            body = response.json()
            return ReleaseInfo(
                date=body.get("published_at"),
                version=body["tag_name"],
                url=body.get("html_url") or "",
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Failed to decode release info for {owner}/{repo}: {e}")
            return None

    async def fill(self, packages: Iterable[Package]) -> int:
        """
        Set `release_info` on every package with a resolvable GitHub repo.
        Returns how many were filled.
        """
        targets = []
        for pkg in packages:
            repo = github_repo(pkg)
            if repo is not None:
                targets.append((pkg, repo))
        if not targets:
            return 0

        semaphore = asyncio.Semaphore(MAX_CONCURRENT_LOOKUPS)

        async with self._client_factory() as client:

            async def lookup(pkg: Package, owner: str, repo: str) -> bool:
                async with semaphore:
                    info = await self.latest_release(client, owner, repo)
                if info is None:
                    return False
                pkg.release_info = info
                return True

            results = await asyncio.gather(*(lookup(pkg, owner, repo) for pkg, (owner, repo) in targets))

        filled = sum(1 for ok in results if ok)
        logger.debug(f"Filled release info for {filled}/{len(targets)} packages")
        return filled
