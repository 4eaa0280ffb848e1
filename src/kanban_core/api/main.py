"""Kanban Core FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_settings
from .errors import error_response, register_exception_handlers
from .routers import api_keys, docs, tickets, workspace

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("kanban-core")

logger.info("Starting Kanban Core API")

# Create FastAPI app
app = FastAPI(
    title="Kanban Core API",
    description="Multi-tenant kanban ticket lifecycle for humans and agents",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(tickets.router, prefix="/api")
app.include_router(docs.router, prefix="/api")
app.include_router(api_keys.router, prefix="/api")
app.include_router(workspace.router, prefix="/api")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Kanban Core API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Registered last so it only sees paths no router matched
@app.api_route(
    "/api/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
def api_not_found(path: str):
    return error_response(404, "Not found")
