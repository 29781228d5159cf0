"""Feedback routes."""

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import success_response
from qrdine.db.session import DbSession
from qrdine.schemas.feedback import FeedbackCreate
from qrdine.services.feedback_service import FeedbackService, feedback_to_dict

router = APIRouter()


@router.post("", status_code=201)
@limiter.limit("10/minute")
def submit_feedback(request: Request, db: DbSession, body: FeedbackCreate):
    feedback = FeedbackService(db).submit_feedback(
        session_id=body.session_id,
        rating=body.rating,
        comments=body.comments,
        categories=[c.model_dump() for c in body.categories],
        is_anonymous=body.is_anonymous,
    )
    return success_response(feedback_to_dict(feedback), message="Thank you for your feedback")
