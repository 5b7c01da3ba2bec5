"""
Channel Audit Engine - FastAPI Backend
Main application entry point with health check and API routing.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from database import engine, Base
import models  # noqa: F401
from routers import health, audit
from services.audit_queue import recover_stalled_audits


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Channel Audit Engine API...")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_audits()
        if recovered:
            print(f"♻️ Recovered {recovered} stalled audits after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled audit recovery skipped: {exc}")
    if not settings.YOUTUBE_API_KEY:
        print("⚠️ YOUTUBE_API_KEY is not set; audits cannot resolve channels.")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Channel Audit Engine API",
    description="Audit YouTube channels against peers and get actionable recommendations",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(audit.router, prefix="/audits", tags=["Audit"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Channel Audit Engine API",
        "version": "0.1.0",
        "status": "running"
    }
