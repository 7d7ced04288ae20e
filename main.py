"""
Exam Session Engine - FastAPI Application

Entry point exposing the exam session action set over HTTP.
Business logic lives in the assessment package.
"""
import logging

from fastapi import FastAPI

from config import get_settings, validate_required_settings
from database import get_db_manager
from assessment.api import sessions

settings = get_settings()
validate_required_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("assessment.main")

app = FastAPI(
    title="Exam Session Engine",
    description="Timed exam sessions with submission, grading, certificates and retakes",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.include_router(sessions.router)


@app.on_event("startup")
async def startup_event():
    """Create the local cache schema."""
    db_manager = get_db_manager()
    db_manager.init_db()
    if not db_manager.health_check():
        logger.warning("Completion cache database health check failed on startup")
    logger.info("Exam session engine started")


@app.on_event("shutdown")
async def shutdown_event():
    await sessions.close_collaborators()
    get_db_manager().close()
    logger.info("Exam session engine stopped")


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.environment}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
