from __future__ import annotations

from typing import AsyncIterator, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from brewcatalog.core.dependencies import get_catalog_service
from brewcatalog.domain.errors import (
    AggregationError,
    CatalogNotLoadedError,
    FilterError,
    PackageNotFoundError,
)
from brewcatalog.domain.filters import FilterSet
from brewcatalog.domain.models import Package
from brewcatalog.services.catalog_service import CatalogService
from brewcatalog.services.executor import (
    SINGLE_PACKAGE_COMMANDS,
    CommandFinished,
    CommandOutput,
    CommandType,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class CommandRequest(BaseModel):
    names: List[str] = Field(default_factory=list, description="Target package names.")
    cask: Optional[bool] = Field(default=None, description="Restrict lookup to casks (True) or formulae (False).")


def package_view(pkg: Package) -> dict:
    """Serialized package plus its derived display fields."""
    data = pkg.model_dump(mode="json")
    data.update(
        status=pkg.status,
        short_version=pkg.short_version,
        long_version=pkg.long_version,
        formatted_size=pkg.formatted_size,
        brew_url=pkg.brew_url,
    )
    return data


def _not_loaded(e: CatalogNotLoadedError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(e))


def _split_keywords(q: str) -> List[str]:
    return q.split()


# ---------------------------------------------------------------------------
# 1. Packages
# ---------------------------------------------------------------------------

@router.get("/packages")
async def list_packages(
    filter: Optional[List[str]] = Query(default=None),
    q: str = "",
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    """
    Search the catalog. Without `filter` the configured default filters
    apply; pass `filter=` (empty) to disable them.
    """
    names = None if filter is None else [name for name in filter if name]
    try:
        packages = service.search(_split_keywords(q), names)
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"count": len(packages), "packages": [package_view(p) for p in packages]}


@router.get("/packages/{name}")
async def get_package(
    name: str,
    cask: Optional[bool] = None,
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    try:
        return package_view(service.find(name, cask))
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/outdated")
async def list_outdated(service: CatalogService = Depends(get_catalog_service)) -> dict:
    try:
        packages = service.catalog.outdated()
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    return {"count": len(packages), "packages": [package_view(p) for p in packages]}


# ---------------------------------------------------------------------------
# 2. Dependency queries
# ---------------------------------------------------------------------------

@router.get("/packages/{name}/missing-dependencies")
async def get_missing_dependencies(
    name: str,
    cask: Optional[bool] = None,
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    try:
        return {"name": name, "missing_dependencies": service.missing_dependencies(name, cask)}
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/packages/{name}/installed-dependents")
async def get_installed_dependents(
    name: str,
    cask: Optional[bool] = None,
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    try:
        return {"name": name, "installed_dependents": service.installed_dependents(name, cask)}
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ---------------------------------------------------------------------------
# 3. Filters
# ---------------------------------------------------------------------------

@router.get("/filters")
async def get_filters(
    names: Optional[List[str]] = Query(default=None),
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    """Validate a filter combination; without `names` the defaults are shown."""
    if names is None:
        filters = service.default_filters
    else:
        try:
            filters = FilterSet.parse([n for n in names if n])
        except FilterError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"mask": filters.mask, "filters": filters.names(), "label": str(filters)}


# ---------------------------------------------------------------------------
# 4. Refresh
# ---------------------------------------------------------------------------

@router.post("/refresh")
async def refresh(
    invalidate: bool = False,
    service: CatalogService = Depends(get_catalog_service),
) -> dict:
    try:
        catalog = await service.refresh(invalidate=invalidate)
    except AggregationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"packages": len(catalog), "outdated": len(catalog.outdated())}


# ---------------------------------------------------------------------------
# 5. Commands
# ---------------------------------------------------------------------------

@router.post("/commands/{command}")
async def run_command(
    command: CommandType,
    body: Optional[CommandRequest] = None,
    service: CatalogService = Depends(get_catalog_service),
) -> StreamingResponse:
    """
    Run a mutating command and stream its output as text/plain lines. The
    last line is "OK" or "ERROR: <reason>".
    """
    body = body or CommandRequest()
    if command in SINGLE_PACKAGE_COMMANDS and len(body.names) != 1:
        raise HTTPException(status_code=400, detail=f"{command.value} takes exactly one package name")

    try:
        packages = service.resolve_targets(command, body.names, body.cask)
    except CatalogNotLoadedError as e:
        raise _not_loaded(e)
    except PackageNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    async def stream() -> AsyncIterator[str]:
        async for event in service.run_command(command, packages):
            if isinstance(event, CommandOutput):
                yield event.line + "\n"
            elif isinstance(event, CommandFinished):
                yield "OK\n" if event.ok else f"ERROR: {event.error}\n"

    return StreamingResponse(stream(), media_type="text/plain")
