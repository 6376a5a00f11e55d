"""
Feedback router: the in-app "We value your feedback" form.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import get_db
from luba.middleware.auth import get_current_user
from luba.schemas.schemas import FeedbackRequest, FeedbackResponse
from luba.services import feedback

router = APIRouter(prefix="/v1/feedback", tags=["Feedback"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=FeedbackResponse)
async def submit_feedback(
    payload: FeedbackRequest,
    db: AsyncSession = Depends(get_db),
    token_data: dict = Depends(get_current_user),
):
    entry = await feedback.submit_feedback(
        db, payload.message, contact=payload.contact, user_id=token_data["sub"]
    )
    return FeedbackResponse.model_validate(entry)
