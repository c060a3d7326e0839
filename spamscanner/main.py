from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from spamscanner.config import settings
from spamscanner.errors import ModelUnavailableError
from spamscanner.services.scanner import SpamScanner
from spamscanner.api import routes

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"🚀 Starting {settings.APP_NAME}...")
    scanner = SpamScanner(settings)
    app.state.scanner = scanner
    try:
        errors = scanner.load()
        for error in errors:
            logger.warning(f"⚠️ Threat feed unavailable: {error}")
        logger.info("✓ Scanner loaded")
    except ModelUnavailableError as e:
        # Stay up; scan endpoints answer 503 until a model is available
        logger.error(f"❌ Scanner not loaded: {e}")
    yield
    # Shutdown
    logger.info(f"👋 Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)

# Include routers
app.include_router(routes.router, prefix=settings.API_PREFIX, tags=["Scanning"])


@app.get("/")
def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.VERSION,
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("spamscanner.main:app", host="0.0.0.0", port=8000, reload=False)
