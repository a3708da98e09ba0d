"""
MealPass - event check-in and meal coupon redemption backend
Main application entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from mealpass.core.config import settings
from mealpass.core.db import engine, Base
from mealpass.core.exceptions import MealPassError
from mealpass.core.logging import setup_logging
from mealpass.api import routes_admin, routes_public, routes_scan, routes_webhooks, ws
from mealpass.services.photo_directory import PhotoDirectory
from mealpass.utils.responses import mealpass_error_handler

setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
    
    app.state.photo_directory = PhotoDirectory()
    yield
    await app.state.photo_directory.close()
    logger.info("Application shutdown")

# Create FastAPI application
app = FastAPI(
    title="MealPass",
    description="Event check-in and meal coupon redemption",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(MealPassError, mealpass_error_handler)

# Include routers
app.include_router(routes_public.router, tags=["public"])
app.include_router(routes_scan.router, prefix="/scan", tags=["scan"])
app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])
app.include_router(routes_webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])

# Note: Run this ASGI app directly with Uvicorn or Hypercorn. For Gunicorn,
# use `uvicorn.workers.UvicornWorker` instead of wrapping the app.

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
