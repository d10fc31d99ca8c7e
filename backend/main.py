import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.metrics import router as metrics_router
from api.upload import router as upload_router
from api.alerts import router as alerts_router
from alerts import get_detector
from core import get_engine
from core.config import get_settings
from core.errors import StoreUnavailableError
from core.logs import configure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure(settings.log_level)
    logger.info(
        "Starting confluence alerting (db=%s, default resolution=%s, cooldown=%d min)",
        settings.db_path, settings.default_resolution.value, settings.cooldown_minutes,
    )
    yield
    flushed = get_engine().flush()
    logger.info("Shutdown: flushed %d building candles", flushed)

app = FastAPI(
    title="Metric Confluence Alerting API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metrics_router, prefix="/api")
app.include_router(upload_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.warning("Store unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/")
async def root():
    return {
        "name": "Metric Confluence Alerting API",
        "version": "1.0.0",
        "docs": "/docs",
    }

@app.get("/health")
async def health():
    engine = get_engine()
    stats = engine.stats()
    detector = get_detector().stats()

    return {
        "status": "healthy",
        "engine": {
            "reports_ingested": stats["reports_ingested"],
            "reports_backfilled": stats["reports_backfilled"],
            "candles_created": stats["candles_created"],
            "agents": stats["buffer"]["agents"],
            "uptime_seconds": round(stats["uptime_seconds"], 2)
        },
        "detector": {
            "evaluations": detector["evaluations"],
            "triggers": detector["triggers"],
            "suppressed": detector["suppressed"],
            "store_failures": detector["store_failures"]
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
