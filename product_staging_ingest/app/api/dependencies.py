"""
FastAPI dependency injection for Product Staging Ingest

Components are built once in the application lifespan and stored on
``app.state``; routes reach them through these dependencies.
"""

from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException
from fastapi.requests import HTTPConnection

from ..core.settings import ProductStagingSettings
from ..services.notifications import Notifier

if TYPE_CHECKING:
    from ..main import IngestComponents


def get_components(connection: HTTPConnection) -> "IngestComponents":
    components = getattr(connection.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Service is not initialized")
    return components


def get_app_settings(connection: HTTPConnection) -> ProductStagingSettings:
    return connection.app.state.settings


def get_notifier(components: "IngestComponents" = Depends(get_components)) -> Notifier:
    return components.notifier


ComponentsDep = Depends(get_components)
SettingsDep = Depends(get_app_settings)
NotifierDep = Depends(get_notifier)
