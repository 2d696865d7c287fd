import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import settings
from .database import Base, SessionLocal, engine
from .deps import build_services
from .limiter import limiter
from .auth import router as auth_router
from .routes import router as api_router
from .webhook import router as webhook_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    Base.metadata.create_all(bind=engine)
    async with httpx.AsyncClient(timeout=30.0) as http:
        app.state.services = build_services(settings, SessionLocal, http)
        logger.info("Rain or Shine services initialized")
        yield
    logger.info("Rain or Shine services stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Rain or Shine", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(webhook_router, prefix="/api/strava", tags=["strava"])
    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(api_router, prefix="/api", tags=["api"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error. Check logs for traceback."},
        )

    @app.get("/")
    def read_root():
        return {"message": "Rain or Shine API is running"}

    return app


app = create_app()


def main() -> None:
    """Main entry point for the server."""
    import os
    import uvicorn

    try:
        logger.info("Starting Rain or Shine API...")
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except Exception as e:
        logger.error(f"Server error: {str(e)}", exc_info=True)
        raise

if __name__ == "__main__":
    main()
