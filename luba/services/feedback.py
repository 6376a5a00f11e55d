"""
User feedback from the in-app form.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import safe_commit
from luba.errors import ValidationError
from luba.models.feedback import Feedback

logger = logging.getLogger(__name__)

FEEDBACK_REQUIRED = "Please write your feedback before submitting."


async def submit_feedback(
    db: AsyncSession,
    message: str,
    contact: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Feedback:
    message = (message or "").strip()
    if not message:
        raise ValidationError(FEEDBACK_REQUIRED, fields={"message": FEEDBACK_REQUIRED})
    entry = Feedback(
        user_id=user_id,
        message=message,
        contact=(contact or "").strip() or None,
        submitted_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await safe_commit(db, f"saving feedback from user={user_id}")
    logger.info("Feedback %s received from user=%s", entry.id, user_id)
    return entry
