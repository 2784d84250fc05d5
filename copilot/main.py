"""
GE CoPilot API - Main Application Entry Point
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI
from sqlalchemy import text

from copilot.config import settings
from copilot.db import async_session_maker, init_db
from copilot.api import chat_router, user_router
from copilot.errors import register_exception_handlers
from copilot.services.completion_gateway import CompletionGateway
from copilot.services.google_identity import GoogleIdentity
from copilot.services.mail_service import Mailer
from copilot.services.storage_service import ProfileImageStorage

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    app.state.started_at = time.time()

    # Startup
    print("🚀 GE CoPilot API starting up...")
    await init_db()
    print("✅ Database initialized")

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set, completions will fail")
    openai_client = AsyncOpenAI(api_key=settings.openai_api_key or "missing")
    app.state.gateway = CompletionGateway(openai_client)
    app.state.mailer = Mailer()
    app.state.storage = ProfileImageStorage()
    app.state.google = GoogleIdentity()
    print(f"✅ Completion gateway ready (model: {settings.chat_model})")

    if settings.enable_scheduler:
        from copilot.scripts.scheduled_tasks import start_scheduler
        start_scheduler()
        print("✅ Pending record purge scheduler started")

    yield

    # Shutdown
    print("🛑 GE CoPilot API shutting down...")
    if settings.enable_scheduler:
        from copilot.scripts.scheduled_tasks import stop_scheduler
        stop_scheduler()
        print("📅 Scheduler stopped")

    await openai_client.close()
    print("✅ Shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    description="Chat backend with per-user sessions, file-bound assistants and OTP login",
    version=VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(user_router, prefix=settings.api_prefix)
app.include_router(chat_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "name": settings.app_name,
        "status": "healthy",
        "version": VERSION,
    }


@app.get("/health")
async def health():
    """Health check with a database probe and uptime"""
    db_status = "connected"
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database probe failed: {e}")
        db_status = f"error: {e}"

    started_at = getattr(app.state, "started_at", None)
    uptime = time.time() - started_at if started_at else 0

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "uptime_seconds": round(uptime, 1),
        "database": db_status,
        "chat_model": settings.chat_model,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("copilot.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
