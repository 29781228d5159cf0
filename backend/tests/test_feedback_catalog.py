"""Tests for the menu read model and post-visit feedback."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from qrdine.core.errors import (
    FeedbackAlreadySubmitted,
    InvalidState,
    InvalidSelection,
    MenuItemNotFound,
    NotFound,
    SessionNotFound,
    ValidationError,
)
from qrdine.db.base import utcnow
from qrdine.models import Category, Feedback, MenuItem, TableSession
from qrdine.services import feedback_service
from qrdine.services.catalog_service import CatalogService, resolve_add_ons, resolve_variant
from qrdine.services.feedback_service import FeedbackService


class TestMenu:
    def test_menu_groups_available_items(self, db_session, restaurant, category, menu_item, pizza):
        hidden = MenuItem(
            restaurant_id=restaurant.id,
            category_id=category.id,
            name="Seasonal Soup",
            price=Decimal("120"),
            is_available=False,
        )
        db_session.add(hidden)
        db_session.add(Category(restaurant_id=restaurant.id, name="Archived", is_active=False))
        db_session.commit()

        menu = CatalogService(db_session).get_menu(restaurant.id)

        assert menu["restaurant"]["name"] == "Spice Route"
        assert [c["name"] for c in menu["categories"]] == ["Mains"]
        assert [i["name"] for i in menu["categories"][0]["items"]] == ["Paneer Tikka", "Margherita"]

    def test_quick_add_is_ordered_and_limited(self, db_session, restaurant, category, menu_item):
        for rank, name in [(3, "Lassi"), (2, "Naan"), (4, "Papad")]:
            db_session.add(MenuItem(
                restaurant_id=restaurant.id,
                category_id=category.id,
                name=name,
                price=Decimal("50"),
                quick_add_order=rank,
            ))
        db_session.commit()

        quick = CatalogService(db_session).get_menu(restaurant.id)["quick_add_items"]
        assert [i["name"] for i in quick] == ["Paneer Tikka", "Naan", "Lassi"]

    def test_unknown_restaurant(self, db_session):
        with pytest.raises(NotFound):
            CatalogService(db_session).get_menu(999)

    def test_unknown_menu_item(self, db_session):
        with pytest.raises(MenuItemNotFound):
            CatalogService(db_session).get_menu_item(999)


class TestSelections:
    def test_no_variant(self, pizza):
        assert resolve_variant(pizza, None) is None

    def test_variant_snapshot(self, pizza):
        assert resolve_variant(pizza, "sm") == {"id": "sm", "name": "Small", "price_modifier": -50.0}

    def test_add_ons_are_summed_and_sorted(self, pizza):
        snapshot = resolve_add_ons(pizza, [
            {"add_on_id": "olives", "quantity": 1},
            {"add_on_id": "cheese", "quantity": 1},
            {"add_on_id": "cheese", "quantity": 1},
        ])
        assert [(a["add_on_id"], a["quantity"], a["price"]) for a in snapshot] == [
            ("cheese", 2, 40.0),
            ("olives", 1, 25.0),
        ]

    def test_add_on_on_item_without_add_ons(self, menu_item):
        with pytest.raises(InvalidSelection):
            resolve_add_ons(menu_item, [{"add_on_id": "cheese", "quantity": 1}])


class TestFeedback:
    def test_submit(self, db_session, active_session):
        feedback = FeedbackService(db_session).submit_feedback(
            active_session,
            5,
            comments="Lovely",
            categories=[{"category": "food", "rating": 5}, {"category": "service", "rating": 4}],
        )
        assert feedback.id is not None
        assert feedback.rating == 5
        assert len(feedback.categories) == 2

    def test_one_per_session(self, db_session, active_session):
        service = FeedbackService(db_session)
        service.submit_feedback(active_session, 4)
        with pytest.raises(FeedbackAlreadySubmitted):
            service.submit_feedback(active_session, 2)

    def test_concurrent_submission_loses_on_unique_session(self, db_session, active_session, monkeypatch):
        session = db_session.get(TableSession, active_session)
        submitted = []

        def other_device_submits_first():
            # Runs after the duplicate check, just before our row is built
            now = utcnow()
            if not submitted:
                submitted.append(now)
                db_session.add(Feedback(session_id=session.id, restaurant_id=session.restaurant_id, rating=4))
                db_session.flush()
            return now

        monkeypatch.setattr(feedback_service, "utcnow", other_device_submits_first)
        with pytest.raises(FeedbackAlreadySubmitted) as exc_info:
            FeedbackService(db_session).submit_feedback(active_session, 2)

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert db_session.query(Feedback).count() == 0

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_out_of_range(self, db_session, active_session, rating):
        with pytest.raises(ValidationError):
            FeedbackService(db_session).submit_feedback(active_session, rating)

    def test_category_rating_out_of_range(self, db_session, active_session):
        with pytest.raises(ValidationError):
            FeedbackService(db_session).submit_feedback(
                active_session, 4, categories=[{"category": "ambience", "rating": 9}]
            )

    def test_cancelled_session(self, db_session, session_service, active_session):
        session_service.cancel_session(active_session, "Wrong table")
        with pytest.raises(InvalidState):
            FeedbackService(db_session).submit_feedback(active_session, 3)

    def test_unknown_session(self, db_session):
        with pytest.raises(SessionNotFound):
            FeedbackService(db_session).submit_feedback(4242, 3)
