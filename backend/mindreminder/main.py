from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from mindreminder.core.config import settings
from mindreminder.db.session import create_tables
from mindreminder.routes import auth, friends, micro_actions, reminders
from mindreminder.routes import settings as settings_routes


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.app_name} API")
    logger.info(f"CORS allow_origins: {settings.cors_origins}")
    logger.info(f"Habit day boundary default timezone: {settings.default_timezone}")
    create_tables()
    yield
    # Shutdown
    logger.info("Shutting down API")


app = FastAPI(
    title=f"{settings.app_name} API",
    description="Reminders, micro-action habits, completion streaks and friends",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware - specific origins for credentials support
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(micro_actions.router, prefix="/micro-actions", tags=["micro-actions"])
app.include_router(reminders.router, prefix="/reminders", tags=["reminders"])
app.include_router(settings_routes.router, prefix="/settings", tags=["settings"])
app.include_router(friends.router, prefix="/friends", tags=["friends"])


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name} API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "app": settings.app_name}
