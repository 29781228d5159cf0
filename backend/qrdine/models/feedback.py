"""Post-visit feedback."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Text
from sqlalchemy.orm import validates

from qrdine.db.base import Base, utcnow
from qrdine.models.validators import rating_score, validate_list


class Feedback(Base):
    """One rating per dining session."""
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, unique=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comments = Column(Text, nullable=True)
    categories = Column(JSON, default=list)  # [{"category": "food", "rating": 5, "comments": null}]
    is_anonymous = Column(Boolean, default=False)
    submitted_at = Column(DateTime(timezone=True), default=utcnow)

    @validates('rating')
    def _validate_rating(self, key, value):
        return rating_score(key, value)

    @validates('categories')
    def _validate_categories(self, key, value):
        return validate_list(key, value)
