import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging
from .path_routes import router as path_router
from .queue_routes import analysis_router, router as queue_router
from .services import reset_services


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Adaptive Curriculum Engine", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(path_router)
app.include_router(queue_router)
app.include_router(analysis_router)

settings_snapshot = get_settings()
logger.info("Curriculum engine starting with analysis dispatch: %s", settings_snapshot.analysis_dispatch)
logger.info("OpenAI API key configured: %s", bool(settings_snapshot.openai_api_key))
logger.info("Queue trigger secret configured: %s", bool(settings_snapshot.queue_trigger_secret))


@app.on_event("shutdown")
def shutdown_services() -> None:
    reset_services()


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "analysis_dispatch": settings.analysis_dispatch}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    try:
        engine = get_engine()
        pool = get_pool_snapshot(engine)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "dialect": engine.dialect.name,
        "analysis_dispatch": settings.analysis_dispatch,
        "pool": pool,
    }
