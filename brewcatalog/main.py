import asyncio
import logging

from fastapi import FastAPI

from brewcatalog.api.catalog import router as catalog_router
from brewcatalog.core.dependencies import get_catalog_service, get_config
from brewcatalog.domain.errors import AggregationError

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_config().log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Brew Catalog",
    version="0.1.0",
    description="Merged catalog of Homebrew formulae and casks with local install state.",
)


async def initial_refresh() -> None:
    try:
        catalog = await get_catalog_service().refresh()
        logger.info(f"Initial catalog loaded: {len(catalog)} packages, {len(catalog.outdated())} outdated")
    except AggregationError as e:
        logger.error(f"Initial catalog load failed: {e}")


@app.on_event("startup")
async def startup_event() -> None:
    """
    Build the catalog service (validating configured filters) and start the
    first aggregation cycle in the background.
    """
    get_catalog_service()
    asyncio.create_task(initial_refresh())


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await get_catalog_service().close()


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok", "loaded": get_catalog_service().loaded}


app.include_router(catalog_router, prefix="/api", tags=["catalog"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "brewcatalog.main:app",
        host="127.0.0.1",
        port=8000,
    )
