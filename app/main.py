import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv

from app.database import Database
from app.routes.payment.payment_routes import router as payment_router
from app.routes.payment.powertranz_routes import router as powertranz_router

# Load environment variables
load_dotenv()

# Get environment variables
APP_NAME = os.getenv("APP_NAME", "eSIM Payments")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the application"""
    # Startup
    await Database.connect_db()
    yield
    # Shutdown
    await Database.close_db()


app = FastAPI(
    title=APP_NAME,
    version=APP_VERSION,
    description="eSIM storefront payment orchestration and pricing API",
    lifespan=lifespan
)

# CORS middleware
# In development, allow all origins for easier testing
DEBUG = os.getenv("DEBUG", "True").lower() == "true"

cors_origins = [
    FRONTEND_URL,
    "http://localhost:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if not DEBUG else ["*"],
    allow_credentials=not DEBUG,  # Can't use credentials with wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /api prefix
app.include_router(payment_router, prefix="/api")  # Checkout and confirmation
app.include_router(powertranz_router, prefix="/api")  # PowerTranz bank callbacks


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {APP_NAME} API",
        "version": APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
