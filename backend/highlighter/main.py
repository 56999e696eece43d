"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from highlighter.config import settings
from highlighter.db.database import async_session_maker, close_db, init_db
from highlighter.api.routes import router
from highlighter.services.highlighter_service import Collaborators, HighlighterService
from highlighter.workers.task_runner import TaskRunner

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Highlighter...")

    await init_db()
    logger.info("Database initialized")

    service = HighlighterService(Collaborators.default(async_session_maker))
    await service.init()
    app.state.highlighter = service
    app.state.task_runner = TaskRunner()

    yield

    logger.info("Shutting down Highlighter...")
    await app.state.task_runner.shutdown()
    await service.shutdown()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Stream highlight detection, clip editing and export",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "highlighter.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
