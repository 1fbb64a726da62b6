from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging
import os

# Load environment variables
load_dotenv()

# Import routers and services
from wellbeing import (
    accounts_router,
    appointments_router,
    assistant_router,
    doctors_router,
    messages_router,
)
from wellbeing.database import db_service
from wellbeing.limits import limiter
from wellbeing.storage import MEDIA_ROOT

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("🚀 Starting Wellbeing backend...")

    MEDIA_ROOT.mkdir(parents=True, exist_ok=True)

    try:
        db_service.connect()
        logger.info("✓ MongoDB connected successfully")

        try:
            await db_service.db.command('ping')
            logger.info("✓ MongoDB ping successful")
            await db_service.ensure_indexes()
        except Exception as e:
            logger.warning(f"⚠️ MongoDB ping failed: {e}")
            logger.info("Server will continue, but database operations may fail")
    except Exception as e:
        logger.error(f"❌ MongoDB connection failed: {e}")
        logger.info("⚠️ Server starting WITHOUT database connection")
        logger.info("Please check your MONGODB_URI in .env file")

    yield

    # Shutdown
    logger.info("👋 Shutting down Wellbeing backend...")
    if db_service.client:
        db_service.close()
        logger.info("✓ MongoDB connection closed")


# Create FastAPI app
app = FastAPI(
    title="Wellbeing Appointments API",
    description="Patient/doctor appointment booking, chat and AI symptom checker",
    version="1.0.0",
    lifespan=lifespan
)

# Register rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS Configuration
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(accounts_router, prefix="/api", tags=["accounts"])
app.include_router(doctors_router, prefix="/api", tags=["doctors"])
app.include_router(appointments_router, prefix="/api", tags=["appointments"])
app.include_router(messages_router, prefix="/api", tags=["messages"])
app.include_router(assistant_router, prefix="/api", tags=["assistant"])

# Uploaded avatars and chat media
app.mount("/media", StaticFiles(directory=MEDIA_ROOT, check_dir=False), name="media")


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Wellbeing Appointments API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "features": [
            "Patient and doctor accounts (Signup/Login/Password reset)",
            "Profiles, avatars and patient health data",
            "Doctor directory with search",
            "Appointment booking and doctor dashboard",
            "Patient-doctor chat with realtime stream",
            "AI symptom checker and recommendations"
        ]
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    mongo_status = "unhealthy"
    try:
        if db_service.db is not None:
            await db_service.db.command('ping')
            mongo_status = "healthy"
    except Exception as e:
        logger.error(f"Health check MongoDB error: {e}")

    return {
        "status": "healthy" if mongo_status == "healthy" else "degraded",
        "service": "Wellbeing Backend",
        "version": "1.0.0",
        "mongodb": mongo_status
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
