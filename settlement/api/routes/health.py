from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.db.session import get_db


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe - returns 503 if the database or Redis is unavailable."""
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "dependency": "database", "error": str(e)}
    try:
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()
    except redis.RedisError as e:
        response.status_code = 503
        return {"status": "not_ready", "dependency": "redis", "error": str(e)}
    return {"status": "ready", "gateway": settings.payment_gateway}
