"""
FastAPI application entry point
"""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST, before any other imports
# Explicitly look for .env in the backend directory (parent of app/)
backend_dir = Path(__file__).parent.parent
env_path = backend_dir / ".env"
load_dotenv(dotenv_path=env_path, override=True)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.routes import embed

log = logging.getLogger("embed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle: init DB on boot."""
    from app.services.database import init_db, close_db

    await init_db()
    yield
    await close_db()


app = FastAPI(
    title="Embed Chat API",
    description="Streaming chat backend for embeddable website widgets",
    version="1.0.0",
    lifespan=lifespan,
)

# Widgets live on third-party sites, so origins are configurable
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a plain 400 for widget clients."""
    log.info(f"Rejected request to {request.url.path}: {len(exc.errors())} validation error(s)")
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# Include routers
app.include_router(embed.router, prefix="/api", tags=["embed"])


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {
        "service": "Embed Chat API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "chat": "/api/embed/{embedId}/chat (POST)",
            "history": "/api/embed/{embedId}/{sessionId} (GET, DELETE)",
            "docs": "/docs",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "embed-chat-api"}
