from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ...core.settings import ProductStagingSettings
from ...utils.service_health import IngestHealthChecker
from ..dependencies import ComponentsDep, SettingsDep

router = APIRouter()


@router.get("/health")
async def health_check(
    components=ComponentsDep,
    settings: ProductStagingSettings = SettingsDep,
) -> JSONResponse:
    """Consumer, staging cache and central log health. 503 unless healthy."""
    checker = IngestHealthChecker(settings.SERVICE_NAME)
    checker.start_time = components.started_at

    checker.add_check("consumer", components.consumer.health_check)

    async def central_log_check() -> Dict[str, Any]:
        healthy = await components.message_logger.is_healthy()
        return {
            "status": "healthy" if healthy else "unhealthy",
            "url": components.message_logger.base_url,
        }

    checker.add_check("central_message_log", central_log_check, critical=False)

    report = await checker.run_checks()
    report["version"] = settings.APP_VERSION
    return JSONResponse(
        status_code=200 if report["status"] == "healthy" else 503,
        content=report,
    )


@router.get("/info")
async def service_info(settings: ProductStagingSettings = SettingsDep) -> Dict[str, Any]:
    return {
        "service": settings.SERVICE_NAME,
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "description": "Consumes product lifecycle events and keeps the product staging cache in sync",
        "nats": {
            "url": settings.nats_url,
            "stream": settings.STREAM_NAME,
            "consumer": settings.CONSUMER_NAME,
            "max_deliveries": settings.MAX_DELIVERIES,
        },
        "endpoints": {
            "health": "/health",
            "info": "/info",
            "notifications": "/ws/{room}",
        },
        "notification_rooms": settings.NOTIFICATION_ROOMS,
    }
