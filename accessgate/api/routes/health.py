from fastapi import APIRouter, Response
import redis

from accessgate.core.config import settings


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response) -> dict:
    """Readiness probe - returns 503 if Redis (reader ids, broadcast) is unavailable."""
    try:
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        redis_client.ping()
        return {"status": "ready"}
    except redis.RedisError as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
