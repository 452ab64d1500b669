"""
Klaviyo Hub
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from klaviyo_hub.config import get_settings
from klaviyo_hub.utils.logger import log
from klaviyo_hub import __version__

# Import routers
from klaviyo_hub.api import auth, connected_accounts, health, klaviyo, profiles

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from klaviyo_hub.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for background and periodic backfills
    if settings.enable_scheduler:
        try:
            from klaviyo_hub.scheduler import start_scheduler
            start_scheduler()
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    from klaviyo_hub.scheduler import stop_scheduler
    stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Cross-account Klaviyo profile hub

    - Connect Klaviyo accounts via OAuth (PKCE)
    - Mirror every account's profiles into a local cache
    - Search, filter and deduplicate profiles across accounts
    - Flag emails, phones and external ids shared between accounts
    - Derive email/SMS consent status per profile
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Gzip compression for large profile listings
from starlette.middleware.gzip import GZipMiddleware
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(connected_accounts.router)
app.include_router(profiles.router)
app.include_router(klaviyo.router)


@app.get("/")
async def root():
    """API index"""
    return {
        "name": settings.app_name,
        "version": __version__,
        "endpoints": {
            "connect_account": "GET /api/auth/klaviyo/authorize",
            "oauth_callback": "GET /api/auth/klaviyo/callback",
            "connected_accounts": "GET /api/connected-accounts",
            "disconnect_account": "DELETE /api/connected-accounts/{account_id}",
            "profiles": "GET /api/profiles",
            "profile_stats": "GET /api/profiles/stats",
            "live_profiles": "GET /api/klaviyo/profiles",
            "sync": "POST /api/klaviyo/sync",
            "health": "GET /health",
            "status": "GET /status"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "klaviyo_hub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
