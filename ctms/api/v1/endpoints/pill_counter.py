import logging

from fastapi import APIRouter, Depends

from ctms.api.v1.endpoints.auth import get_current_user
from ctms.models.user import User
from ctms.schemas.pill_counter import PillCountLog

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/log-pill-count")
def log_pill_count(
    payload: PillCountLog,
    current_user: User = Depends(get_current_user),
) -> dict:
    """
    Record a pill-counting result from the image counter in the application log.
    """
    logger.info(
        "Pill count by %s: image=%s total=%s filtered=%s whole=%s half=%s fragments=%s predictions=%s",
        current_user.username,
        payload.image_file_name,
        payload.total_count,
        payload.filtered_count,
        payload.whole_pills,
        payload.half_pills,
        payload.fragments,
        len(payload.predictions),
    )
    return {"success": True, "message": "Pill count logged"}
