"""
Tests for the cross-user visibility predicate.

``can_view_user_data`` is pure, so most cases use a stub relation lookup
instead of a database.
"""
from types import SimpleNamespace
from uuid import uuid4

import pytest

from core.exceptions import ForbiddenError
from core.permissions import (
    can_view_user_data,
    ensure_active_relation,
    ensure_can_view_user_data,
    has_active_relation,
    has_symmetric_relation,
)
from models import RelationStatus, UserRole


def _user(role=UserRole.ATHLETE):
    return SimpleNamespace(id=uuid4(), role=role)


def _lookup(*pairs):
    """Relation lookup backed by a set of (coach_id, athlete_id) pairs."""
    active = set(pairs)
    return lambda coach_id, athlete_id: (coach_id, athlete_id) in active


class TestCanViewUserData:
    def test_self_is_always_allowed(self):
        user = _user()
        assert can_view_user_data(user, user.id, _lookup())

    def test_target_id_may_be_a_string(self):
        user = _user()
        assert can_view_user_data(user, str(user.id), _lookup())

    def test_admin_sees_everyone(self):
        admin = _user(UserRole.ADMIN)
        assert can_view_user_data(admin, uuid4(), _lookup())

    def test_coach_with_active_relation(self):
        coach, athlete = _user(UserRole.COACH), _user()
        assert can_view_user_data(coach, athlete.id, _lookup((coach.id, athlete.id)))

    def test_coach_without_relation_is_refused(self):
        coach, athlete = _user(UserRole.COACH), _user()
        assert not can_view_user_data(coach, athlete.id, _lookup())

    def test_directional_check_ignores_athlete_to_coach(self):
        coach, athlete = _user(UserRole.COACH), _user()
        lookup = _lookup((coach.id, athlete.id))
        assert not can_view_user_data(athlete, coach.id, lookup)

    def test_symmetric_check_accepts_either_direction(self):
        coach, athlete = _user(UserRole.COACH), _user()
        lookup = _lookup((coach.id, athlete.id))
        assert can_view_user_data(athlete, coach.id, lookup, symmetric=True)

    def test_two_athletes_of_the_same_coach_are_not_linked(self):
        coach, a1, a2 = _user(UserRole.COACH), _user(), _user()
        lookup = _lookup((coach.id, a1.id), (coach.id, a2.id))
        assert not can_view_user_data(a1, a2.id, lookup, symmetric=True)


class TestRelationQueries:
    """The session-bound helpers only count ACTIVE relations."""

    @pytest.mark.parametrize("status", [RelationStatus.PENDING, RelationStatus.REJECTED, RelationStatus.INACTIVE])
    def test_non_active_relations_do_not_count(self, db_session, coach, athlete, link, status):
        link(coach, athlete, status=status)
        assert not has_active_relation(db_session, coach.id, athlete.id)
        assert not has_symmetric_relation(db_session, athlete.id, coach.id)

    def test_active_relation(self, db_session, coach, athlete, link):
        link(coach, athlete)
        assert has_active_relation(db_session, coach.id, athlete.id)
        assert not has_active_relation(db_session, athlete.id, coach.id)
        assert has_symmetric_relation(db_session, athlete.id, coach.id)

    def test_ensure_can_view_raises_forbidden(self, db_session, coach, athlete):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_can_view_user_data(db_session, coach, athlete.id)
        assert exc_info.value.status_code == 403
        assert exc_info.value.error_code == "RESOURCE_ACCESS_DENIED"

    def test_ensure_active_relation_raises_forbidden(self, db_session, coach, athlete):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_active_relation(db_session, coach.id, athlete.id, "not your athlete")
        assert exc_info.value.detail == "not your athlete"
        assert exc_info.value.error_code == "RELATION_REQUIRED"
