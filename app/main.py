import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.routes import cache, documents, quiz
from app.db.base import Base
from app.db.sessions import engine
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.services.processing_orchestrator import get_orchestrator

# Import all models to ensure they're registered with Base
import app.models

logger = logging.getLogger("app.main")

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Turn uploaded documents into searchable chunks and multiple-choice quizzes"
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Register routers
app.include_router(documents.router)
app.include_router(quiz.router)
app.include_router(cache.router)


@app.on_event("startup")
async def startup_event():
    logger.info("%s v%s starting", settings.APP_NAME, settings.APP_VERSION)
    logger.info(
        "Remote processing %s",
        "enabled" if settings.remote_processing_enabled else "disabled",
    )


@app.on_event("shutdown")
async def shutdown_event():
    # Wait for in-flight processing jobs
    await get_orchestrator().drain()
