from typing import Optional

from brewcatalog.data.config import load_config
from brewcatalog.domain.models import EngineConfig
from brewcatalog.services.catalog_service import CatalogService

_config: Optional[EngineConfig] = None
_catalog_service: Optional[CatalogService] = None


def get_config() -> EngineConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_catalog_service() -> CatalogService:
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = CatalogService(get_config())
    return _catalog_service


def set_catalog_service(service: Optional[CatalogService]) -> None:
    """Replace the process-wide service (None resets it)."""
    global _catalog_service
    _catalog_service = service
