"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from cvpipeline.app.api.v1.cv import routes as cv_routes
from cvpipeline.app.core.config import settings
from cvpipeline.app.core.logging_config import get_logger, setup_logging
from cvpipeline.app.db.base import Base
from cvpipeline.app.db.session import engine
from cvpipeline.app.services.queue_manager import QueueManager

# Import models so they register with Base.metadata
import cvpipeline.app.models  # noqa: F401

setup_logging()
logger = get_logger("main")

# Create database tables
try:
    Base.metadata.create_all(bind=engine)
except SQLAlchemyError as e:
    logger.error("Database error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the queue worker and cleanup threads; stop them on shutdown."""
    queue: QueueManager = app.state.queue_manager
    if settings.queue_worker_enabled:
        queue.start()
    yield
    queue.shutdown()


# Initialize FastAPI app
app = FastAPI(
    title=f"{settings.app_name} API",
    description="CV extraction pipeline and processing queue",
    version=settings.app_version,
    lifespan=lifespan,
)
app.state.queue_manager = QueueManager()

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cv_routes.router, prefix="/api")


@app.get("/")
def read_root():
    """Root endpoint"""
    return {"message": f"{settings.app_name} API", "version": settings.app_version}


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
