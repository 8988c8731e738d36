"""
Integration tests for the Coach Feedback API
"""
import pytest

from models import Feedback, Notification, NotificationType


@pytest.fixture
def coached_activity(coach, athlete, link, make_activity):
    link(coach, athlete)
    return make_activity(athlete, name="Long run", distance=18.0)


def _create(client, coach, activity, headers, **fields):
    payload = {"activityId": str(activity.id), "comment": "Solid negative split", "rating": 4}
    payload.update(fields)
    return client.post("/api/feedback", json=payload, headers=headers(coach))


class TestCreateFeedback:
    """Test POST /api/feedback"""

    def test_create_notifies_athlete(self, client, db_session, coach, athlete, headers, coached_activity):
        response = _create(client, coach, coached_activity, headers)

        assert response.status_code == 201
        feedback = response.json()["feedback"]
        assert feedback["rating"] == 4
        assert feedback["category"] == "GENERAL"
        assert feedback["coach"]["id"] == str(coach.id)

        notifications = db_session.query(Notification).filter(Notification.user_id == athlete.id).all()
        assert [n.type for n in notifications] == [NotificationType.FEEDBACK_RECEIVED]
        assert notifications[0].data["activityId"] == str(coached_activity.id)

    def test_private_feedback_is_silent(self, client, db_session, coach, headers, coached_activity):
        response = _create(client, coach, coached_activity, headers, isPrivate=True)

        assert response.status_code == 201
        assert db_session.query(Notification).count() == 0

    def test_second_feedback_conflicts(self, client, db_session, coach, headers, coached_activity):
        assert _create(client, coach, coached_activity, headers).status_code == 201

        response = _create(client, coach, coached_activity, headers, comment="Again")

        assert response.status_code == 409
        assert response.json()["code"] == "FEEDBACK_EXISTS"
        assert db_session.query(Feedback).count() == 1

    def test_requires_active_relation(self, client, db_session, coach, athlete, make_activity, headers):
        activity = make_activity(athlete)

        response = _create(client, coach, activity, headers)

        assert response.status_code == 403
        assert response.json()["code"] == "RELATION_REQUIRED"
        assert db_session.query(Feedback).count() == 0

    def test_missing_activity(self, client, coach, headers):
        payload = {"activityId": "00000000-0000-0000-0000-000000000000", "comment": "?"}
        response = client.post("/api/feedback", json=payload, headers=headers(coach))
        assert response.status_code == 404

    def test_rating_range(self, client, coach, headers, coached_activity):
        assert _create(client, coach, coached_activity, headers, rating=6).status_code == 400

    def test_athletes_cannot_give_feedback(self, client, athlete, headers, coached_activity):
        assert _create(client, athlete, coached_activity, headers).status_code == 403


class TestListFeedback:
    def test_athlete_sees_only_public(self, client, coach, athlete, make_user, link, headers, coached_activity):
        second_coach = make_user(role="COACH")
        link(second_coach, athlete)
        _create(client, coach, coached_activity, headers)
        _create(client, second_coach, coached_activity, headers, isPrivate=True)

        data = client.get("/api/feedback", headers=headers(athlete)).json()

        assert data["pagination"]["total"] == 1
        assert data["feedbacks"][0]["coach"]["id"] == str(coach.id)
        assert data["feedbacks"][0]["activity"]["name"] == "Long run"

    def test_coach_sees_own(self, client, coach, athlete, headers, coached_activity):
        _create(client, coach, coached_activity, headers, isPrivate=True)

        data = client.get(f"/api/feedback?athleteId={athlete.id}", headers=headers(coach)).json()
        assert data["pagination"]["total"] == 1

    def test_coach_filter_requires_relation(self, client, coach, make_user, headers):
        stranger = make_user()
        response = client.get(f"/api/feedback?athleteId={stranger.id}", headers=headers(coach))
        assert response.status_code == 403


class TestFeedbackDetail:
    def test_private_feedback_hidden_from_athlete(self, client, coach, athlete, headers, coached_activity):
        feedback_id = _create(client, coach, coached_activity, headers, isPrivate=True).json()["feedback"]["id"]

        assert client.get(f"/api/feedback/{feedback_id}", headers=headers(athlete)).status_code == 403
        assert client.get(f"/api/feedback/{feedback_id}", headers=headers(coach)).status_code == 200

    def test_publishing_notifies(self, client, db_session, coach, athlete, headers, coached_activity):
        feedback_id = _create(client, coach, coached_activity, headers, isPrivate=True).json()["feedback"]["id"]

        response = client.put(f"/api/feedback/{feedback_id}", json={"isPrivate": False, "rating": 5},
                              headers=headers(coach))

        assert response.status_code == 200
        assert response.json()["feedback"]["rating"] == 5
        assert db_session.query(Notification).filter(Notification.user_id == athlete.id).count() == 1

    def test_only_author_updates_or_deletes(self, client, make_user, athlete, link, coach, headers, coached_activity):
        other = make_user(role="COACH")
        link(other, athlete)
        feedback_id = _create(client, coach, coached_activity, headers).json()["feedback"]["id"]

        assert client.put(f"/api/feedback/{feedback_id}", json={"comment": "x"},
                          headers=headers(other)).status_code == 403
        assert client.delete(f"/api/feedback/{feedback_id}", headers=headers(other)).status_code == 403
        assert client.delete(f"/api/feedback/{feedback_id}", headers=headers(coach)).status_code == 200


class TestFeedbackStats:
    def test_coach_must_name_athlete(self, client, coach, headers):
        response = client.get("/api/feedback/stats", headers=headers(coach))
        assert response.status_code == 400
        assert response.json()["code"] == "ATHLETE_REQUIRED"

    def test_stats_for_athlete(self, client, coach, athlete, headers, coached_activity):
        _create(client, coach, coached_activity, headers, rating=4)

        coach_view = client.get(f"/api/feedback/stats/{athlete.id}", headers=headers(coach)).json()
        athlete_view = client.get("/api/feedback/stats", headers=headers(athlete)).json()

        assert coach_view["totals"]["feedbacks"] == 1
        assert coach_view["totals"]["avgRating"] == 4
        assert athlete_view["totals"]["feedbacks"] == 1
        assert athlete_view["byRating"] == [{"rating": 4, "count": 1}]
