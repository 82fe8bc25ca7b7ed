from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from datetime import datetime, timezone
import asyncio
import logging

from . import database_postgres
from .api.dependencies import BookingEngine, set_booking_engine
from .api.routes import availability, holds, quotes, rates
from .config import settings
from .redis_service import redis_service
from .repositories import ReservationRepository

# Hold TTL sweep interval
EXPIRY_SWEEP_SECONDS = 30

app = FastAPI(title="Campground Booking Engine", version="1.0.0")
api_router = APIRouter(prefix="/api")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins.split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

expiry_task = None


async def sweep_expired_holds(engine: BookingEngine):
    while True:
        await asyncio.sleep(EXPIRY_SWEEP_SECONDS)
        try:
            await engine.allocation.expire_holds()
        except Exception as e:
            logger.error(f"Hold expiry sweep failed: {e}")


# Startup and shutdown events
@app.on_event("startup")
async def startup():
    global expiry_task

    session_factory = database_postgres.configure_database(settings.database_url)
    await database_postgres.init_db()
    repository = ReservationRepository(session_factory)

    redis = None
    if settings.redis_url:
        await redis_service.connect()
        redis = redis_service

    engine = set_booking_engine(BookingEngine(settings=settings, redis=redis, repository=repository))
    for campground_id in await repository.campground_ids():
        engine.catalog.publish(await repository.load_snapshot(campground_id))
    await engine.allocation.hydrate()

    expiry_task = asyncio.create_task(sweep_expired_holds(engine))
    logger.info(f"Booking engine ready ({len(engine.catalog.campground_ids())} campgrounds, redis {'on' if redis else 'off'})")


@app.on_event("shutdown")
async def shutdown():
    if expiry_task:
        expiry_task.cancel()
    await database_postgres.close_db()
    if redis_service.redis_client:
        await redis_service.disconnect()
    logger.info("Database and Redis disconnected")


# Basic health check
@api_router.get("/")
async def root():
    return {"message": "Campground Booking Engine API", "status": "running", "version": "1.0.0"}


# Health check
@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        # Check database
        if database_postgres.engine is None:
            raise RuntimeError("database not configured")
        async with database_postgres.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"error: {str(e)}"

    if settings.redis_url:
        try:
            # Check Redis
            await redis_service.redis_client.ping()
            redis_status = "healthy"
        except Exception as e:
            redis_status = f"error: {str(e)}"
    else:
        redis_status = "disabled"

    return {
        "status": "healthy" if db_status == "healthy" and redis_status in ("healthy", "disabled") else "unhealthy",
        "database": db_status,
        "redis": redis_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Include the routers
app.include_router(api_router)
app.include_router(availability.router)
app.include_router(quotes.router)
app.include_router(rates.router)
app.include_router(holds.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("campsite_booking.server:app", host="0.0.0.0", port=8001, reload=True)
