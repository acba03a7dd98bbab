from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import subscription, admin_subscriptions
from services.subscription_lifecycle import InvalidSubscriptionState

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.mongodb import MongoDBJobStore

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
db_name = os.environ.get('DB_NAME', 'arka_services')
TRIAL_SWEEP_HOUR = int(os.environ.get('TRIAL_SWEEP_HOUR', '2'))

# Scheduler with MongoDB job store so jobs survive restarts
jobstores = {}
try:
    from pymongo import MongoClient
    jobstores['default'] = MongoDBJobStore(
        database=db_name,
        collection='scheduled_jobs',
        client=MongoClient(mongo_url)
    )
    logger.info(f"MongoDB job store configured: {db_name}.scheduled_jobs")
except Exception as e:
    logger.warning(f"Failed to configure MongoDB job store, using memory store: {e}")
    jobstores = {}

scheduler = AsyncIOScheduler(jobstores=jobstores)

from job_runner import run_trial_expiry_sweep

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting ARKA Services subscription API")
    await database.connect()

    run_scheduler = not os.environ.get("PYTEST_RUNNING")
    if run_scheduler:
        # Expired trials are also blocked lazily on access; this catches idle accounts
        scheduler.add_job(
            run_trial_expiry_sweep,
            CronTrigger(hour=TRIAL_SWEEP_HOUR, minute=0),
            id="trial_expiry_sweep",
            name="Trial Expiry Sweep",
            replace_existing=True
        )
        scheduler.start()
        logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down ARKA Services subscription API")
    if run_scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="ARKA Services Subscription API",
    description="Trial, subscription lifecycle and entitlement gating",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(subscription.router)
app.include_router(admin_subscriptions.router)

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

@app.exception_handler(InvalidSubscriptionState)
async def invalid_subscription_state_handler(request: Request, exc: InvalidSubscriptionState):
    logger.error(
        "Invalid subscription state subscription_id=%s path=%s: %s",
        exc.subscription_id, request.url.path, exc.message
    )
    return JSONResponse(
        status_code=409,
        content={"detail": {"error_code": "INVALID_SUBSCRIPTION_STATE", "message": exc.message}},
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in exc.errors()],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "request_id": request_id},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
