from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load environment variables from .env file FIRST
load_dotenv()

from database import create_db_and_tables
import models  # Import models to register them with SQLModel
from errors import SchedulingError, StorageError
from routers import appointments, availability, schedules
from slowapi import _rate_limit_exceeded_handler
from sqlalchemy.exc import DBAPIError
from slowapi.errors import RateLimitExceeded

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    yield

app = FastAPI(
    title="Clinic Scheduling API",
    description="Appointment scheduling, availability and lifecycle for clinics",
    version="0.1.0",
    lifespan=lifespan
)

# slowapi resolves the limiter from app state; each router owns its limits
app.state.limiter = appointments.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if isinstance(exc, StorageError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    # Lock waits and aborts outside a service transaction, e.g. SQLite "database is locked"
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    error = StorageError("The operation could not be completed, please retry")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

# CORS configuration - SECURE for production
origins = [
    "http://localhost:3000",  # Development frontend
    "http://localhost:8000",  # Development API
    os.getenv("FRONTEND_URL", "http://localhost:3000"),  # Production frontend from env
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept", "Origin"],
)

# Include routers
app.include_router(appointments.router)
app.include_router(availability.router)
app.include_router(schedules.router)

@app.get("/")
def read_root():
    return {"message": "Welcome to the Clinic Scheduling API"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}
