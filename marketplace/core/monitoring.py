"""Health checks and monitoring endpoints"""
import logging

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config.database import get_db
from marketplace.config.redis import get_redis

logger = logging.getLogger(__name__)

health_router = APIRouter()


@health_router.get("/")
def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "marketplace-booking-engine"}


@health_router.get("/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with dependencies"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis (broker for follow-up effects and batch locks)
    try:
        get_redis().ping()
        checks["redis"] = "healthy"
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        checks["redis"] = f"unhealthy: {str(e)}"

    # Overall status
    if all(status == "healthy" for status in checks.values() if status != "unknown"):
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"

    return checks
