from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.dependencies import get_components, get_db
from app.schemas import HealthRead
from app.services.bootstrap import AuthComponents

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthRead)
def health_check(
    db: Session = Depends(get_db),
    components: AuthComponents = Depends(get_components),
):
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "error"

    client = components.redis.get_client()
    redis_state = "disabled"
    if client is not None:
        try:
            client.ping()
            redis_state = "ok"
        except RedisError:
            logger.exception("Redis health check failed")
            redis_state = "error"

    healthy = database == "ok" and redis_state != "error"
    body = HealthRead(
        status="ok" if healthy else "degraded",
        database=database,
        redis=redis_state,
        checked_at=datetime.now(tz=timezone.utc),
    )
    if healthy:
        return body
    return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
