"""Shared fixtures: fake installation prefixes, feed payloads and HTTP mocks."""

import json
import os
import stat
from pathlib import Path
from typing import Callable, Dict, Optional

import httpx
import pytest

from brewcatalog.domain.models import EngineConfig, Package
from brewcatalog.services.fetcher import (
    CASK_CACHE_KEY,
    FORMULA_ANALYTICS_CACHE_KEY,
    CASK_ANALYTICS_CACHE_KEY,
    FORMULA_CACHE_KEY,
)

FORMULA_URL = "https://feeds.test/formula.jws.json"
CASK_URL = "https://feeds.test/cask.jws.json"
FORMULA_ANALYTICS_URL = "https://feeds.test/formula-analytics.json"
CASK_ANALYTICS_URL = "https://feeds.test/cask-analytics.json"


def make_package(name: str, **fields) -> Package:
    return Package(name=name, **fields)


def formula_entry(name: str, version: str = "1.0", **fields) -> dict:
    entry = {
        "name": name,
        "tap": "homebrew/core",
        "desc": f"{name} description",
        "versions": {"stable": version},
        "revision": 0,
        "homepage": f"https://{name}.example.org",
        "urls": {"stable": {"url": f"https://{name}.example.org/{name}-{version}.tar.gz"}},
        "license": "MIT",
        "aliases": [],
        "dependencies": [],
        "build_dependencies": [],
        "conflicts_with": [],
        "deprecated": False,
        "disabled": False,
        "bottle": {"stable": {"files": {"arm64_sonoma": {}, "x86_64_linux": {}}}},
    }
    entry.update(fields)
    return entry


def cask_entry(token: str, version: str = "1.0", **fields) -> dict:
    entry = {
        "token": token,
        "tap": "homebrew/cask",
        "desc": f"{token} app",
        "version": version,
        "homepage": f"https://{token}.example.org",
        "url": f"https://{token}.example.org/{token}-{version}.dmg",
        "depends_on": {},
        "conflicts_with": None,
        "auto_updates": None,
        "deprecated": False,
        "disabled": False,
        "variations": {},
    }
    entry.update(fields)
    return entry


def signed(payload) -> bytes:
    return json.dumps({"payload": json.dumps(payload), "signatures": []}).encode()


def analytics(field: str, counts: Dict[str, str]) -> bytes:
    return json.dumps({"items": [{field: name, "count": count} for name, count in counts.items()]}).encode()


class FakePrefix:
    """Builds a <prefix>/Cellar + <prefix>/Caskroom tree under tmp_path."""

    def __init__(self, root: Path):
        self.root = root
        (root / "Cellar").mkdir(parents=True)
        (root / "Caskroom").mkdir(parents=True)

    def add_formula(
        self,
        name: str,
        version_dir: str,
        receipt: Optional[dict] = None,
        tap: str = "homebrew/core",
        as_dependency: bool = False,
        time: int = 1700000000,
    ) -> Path:
        path = self.root / "Cellar" / name / version_dir
        path.mkdir(parents=True)
        if receipt is None:
            receipt = {
                "installed_as_dependency": as_dependency,
                "time": time,
                "source": {"tap": tap, "path": "", "versions": {"stable": version_dir.split("_")[0]}},
            }
        if receipt:
            (path / "INSTALL_RECEIPT.json").write_text(json.dumps(receipt))
        return path

    def add_cask(self, token: str, version: str, tap: str = "homebrew/cask", source_path: str = "") -> Path:
        path = self.root / "Caskroom" / token
        (path / version).mkdir(parents=True)
        (path / ".metadata").mkdir()
        receipt = {"installed_as_dependency": False, "time": 1700000000, "source": {"tap": tap, "path": source_path}}
        (path / ".metadata" / "INSTALL_RECEIPT.json").write_text(json.dumps(receipt))
        return path

    def pin(self, name: str) -> None:
        pinned = self.root / "var" / "homebrew" / "pinned"
        pinned.mkdir(parents=True, exist_ok=True)
        (pinned / name).symlink_to(self.root / "Cellar" / name)


@pytest.fixture
def fake_prefix(tmp_path) -> FakePrefix:
    return FakePrefix(tmp_path / "prefix")


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_brew(tmp_path) -> Callable[[str], str]:
    """Factory writing a fake `brew` executable with the given script body."""

    def factory(body: str) -> str:
        return os.fspath(write_script(tmp_path / "brew", body))

    return factory


@pytest.fixture
def test_config() -> EngineConfig:
    return EngineConfig(
        formula_url=FORMULA_URL,
        cask_url=CASK_URL,
        formula_analytics_url=FORMULA_ANALYTICS_URL,
        cask_analytics_url=CASK_ANALYTICS_URL,
    )


class FeedServer:
    """In-memory responses for httpx.MockTransport, with a request log."""

    def __init__(self, responses: Optional[Dict[str, httpx.Response]] = None):
        self.responses: Dict[str, httpx.Response] = dict(responses or {})
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        response = self.responses.get(url)
        if response is None:
            return httpx.Response(404, text="not found")
        if isinstance(response, Exception):
            raise response
        return response

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, url: str) -> int:
        return sum(1 for u in self.requests if u == url)


def default_responses(formulae=None, casks=None, formula_counts=None, cask_counts=None) -> Dict[str, httpx.Response]:
    return {
        FORMULA_URL: httpx.Response(200, content=signed(formulae or [])),
        CASK_URL: httpx.Response(200, content=signed(casks or [])),
        FORMULA_ANALYTICS_URL: httpx.Response(200, content=analytics("formula", formula_counts or {})),
        CASK_ANALYTICS_URL: httpx.Response(200, content=analytics("cask", cask_counts or {})),
    }


ALL_CACHE_KEYS = [FORMULA_CACHE_KEY, CASK_CACHE_KEY, FORMULA_ANALYTICS_CACHE_KEY, CASK_ANALYTICS_CACHE_KEY]
