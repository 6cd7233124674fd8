import logging
import os
from fastapi import FastAPI
from dotenv import load_dotenv
from core.config import settings
from core.db import Base, engine
from core.celery import celery_app
import models  # noqa: F401
from routes.checkout import router as checkout_router
from routes.orders import router as orders_router
from routes.stores import router as stores_router

load_dotenv()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Ensure tables exist (for dev/test; in prod use Alembic)
Base.metadata.create_all(bind=engine)

app.include_router(stores_router)
app.include_router(checkout_router)
app.include_router(orders_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect()
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
