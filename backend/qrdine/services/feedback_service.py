"""Post-visit feedback capture."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrdine.core.errors import FeedbackAlreadySubmitted, InvalidState, ValidationError
from qrdine.db.base import utcnow
from qrdine.db.session import transaction
from qrdine.models.feedback import Feedback
from qrdine.models.session import SessionStatus
from qrdine.services.session_service import get_session_or_404

logger = logging.getLogger(__name__)


def feedback_to_dict(feedback: Feedback) -> Dict[str, Any]:
    return {
        "id": feedback.id,
        "session_id": feedback.session_id,
        "restaurant_id": feedback.restaurant_id,
        "rating": feedback.rating,
        "comments": feedback.comments,
        "categories": feedback.categories or [],
        "is_anonymous": feedback.is_anonymous,
        "submitted_at": feedback.submitted_at.isoformat() if feedback.submitted_at else None,
    }


class FeedbackService:
    """One rating per dining session."""

    def __init__(self, db: Session):
        self.db = db

    def submit_feedback(
        self,
        session_id: int,
        rating: int,
        comments: Optional[str] = None,
        categories: Optional[List[Dict[str, Any]]] = None,
        is_anonymous: bool = False,
    ) -> Feedback:
        if not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5", details={"rating": rating})
        for entry in categories or []:
            if not 1 <= int(entry.get("rating", 0)) <= 5:
                raise ValidationError(
                    f"Rating for {entry.get('category')} must be between 1 and 5",
                    details={"category": entry.get("category"), "rating": entry.get("rating")},
                )

        session = get_session_or_404(self.db, session_id)
        if session.status == SessionStatus.CANCELLED:
            raise InvalidState("Feedback cannot be left for a cancelled session")
        if self.db.query(Feedback).filter(Feedback.session_id == session_id).first():
            raise FeedbackAlreadySubmitted("Feedback was already submitted for this session")

        try:
            with transaction(self.db):
                feedback = Feedback(
                    session_id=session_id,
                    restaurant_id=session.restaurant_id,
                    rating=int(rating),
                    comments=comments,
                    categories=list(categories or []),
                    is_anonymous=is_anonymous,
                    submitted_at=utcnow(),
                )
                self.db.add(feedback)
        except IntegrityError as exc:
            raise FeedbackAlreadySubmitted("Feedback was already submitted for this session") from exc

        logger.info(f"Feedback for session {session_id}: rating={rating}")
        return feedback
