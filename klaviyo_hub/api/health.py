"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from klaviyo_hub.config import get_settings
from klaviyo_hub import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    from klaviyo_hub.scheduler import get_scheduled_jobs, scheduler

    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "backfill": {
            "strategy": settings.backfill_strategy,
            "page_size": settings.backfill_page_size,
            "max_pages": settings.backfill_max_pages,
        },
        "scheduler": {
            "running": scheduler.running,
            "jobs": get_scheduled_jobs(),
        },
        "timestamp": datetime.utcnow().isoformat()
    }
