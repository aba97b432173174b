"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cabin_rotation.core.config import settings
from cabin_rotation.core.deps import get_db
from cabin_rotation.services import selection_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class TurnTimeoutResponse(BaseModel):
    checked: int
    advanced: int
    failed: int


@router.post(
    "/turn-timeouts",
    response_model=TurnTimeoutResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def advance_overdue_turns(db: Session = Depends(get_db)):
    """
    Sweep for turns held past their selection window.

    Each overdue turn is skipped once (selection_days in the primary phase,
    secondary_selection_days in the bonus round). Run every few minutes.
    """
    result = selection_service.advance_overdue_turns(db, datetime.now(timezone.utc))
    if result["checked"]:
        logger.info(
            "Turn timeout sweep: checked=%s advanced=%s failed=%s",
            result["checked"],
            result["advanced"],
            result["failed"],
        )
    return TurnTimeoutResponse(**result)
