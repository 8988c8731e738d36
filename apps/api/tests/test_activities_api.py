"""
Integration tests for the Activities API

Covers manual logging, visibility of other users' activities, workout
completion through a linked activity, and the delete restriction on
imported activities.
"""
from datetime import datetime, timedelta, timezone

import pytest

from models import (
    Activity,
    ActivitySource,
    AssignmentStatus,
    Notification,
    NotificationType,
    Workout,
    WorkoutAssignment,
)


@pytest.fixture
def assignment(db_session, coach, athlete, link):
    link(coach, athlete)
    workout = Workout(creator_id=coach.id, name="Tempo run")
    assignment = WorkoutAssignment(
        workout=workout,
        athlete_id=athlete.id,
        scheduled_date=datetime.now(timezone.utc) + timedelta(days=1),
    )
    db_session.add(assignment)
    db_session.commit()
    return assignment


def _payload(**overrides):
    payload = {
        "name": "Easy run",
        "type": "RUNNING",
        "startTime": "2024-05-10T07:00:00Z",
        "distance": 8.2,
    }
    payload.update(overrides)
    return payload


class TestCreateActivity:
    """Test POST /api/activities"""

    def test_create_manual_activity(self, client, athlete, headers):
        response = client.post("/api/activities", json=_payload(), headers=headers(athlete))

        assert response.status_code == 201
        activity = response.json()["activity"]
        assert activity["name"] == "Easy run"
        assert activity["source"] == ActivitySource.MANUAL
        assert activity["userId"] == str(athlete.id)

    def test_duration_derived_from_end_time(self, client, athlete, headers):
        payload = _payload(startTime="2024-05-10T07:00:00Z", endTime="2024-05-10T07:45:30.900Z")
        response = client.post("/api/activities", json=payload, headers=headers(athlete))

        assert response.status_code == 201
        assert response.json()["activity"]["duration"] == 2730

    def test_explicit_duration_wins(self, client, athlete, headers):
        payload = _payload(endTime="2024-05-10T08:00:00Z", duration=1800)
        response = client.post("/api/activities", json=payload, headers=headers(athlete))
        assert response.json()["activity"]["duration"] == 1800

    def test_end_before_start_is_rejected(self, client, athlete, headers):
        payload = _payload(endTime="2024-05-10T06:00:00Z")
        response = client.post("/api/activities", json=payload, headers=headers(athlete))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_type_is_rejected(self, client, athlete, headers):
        response = client.post("/api/activities", json=_payload(type="PARAGLIDING"), headers=headers(athlete))
        assert response.status_code == 400

    def test_with_metrics(self, client, athlete, headers):
        payload = _payload(metrics={"avgHeartRate": 148, "elevationGain": 120.5})
        response = client.post("/api/activities", json=payload, headers=headers(athlete))

        metrics = response.json()["activity"]["metrics"]
        assert metrics["avgHeartRate"] == 148
        assert metrics["elevationGain"] == 120.5

    def test_requires_auth(self, client):
        response = client.post("/api/activities", json=_payload())
        assert response.status_code == 401


class TestWorkoutCompletion:
    """Linking an assignment completes it and notifies the coach"""

    def test_completes_assignment_and_notifies_coach(self, client, db_session, coach, athlete, headers, assignment):
        payload = _payload(workoutAssignmentId=str(assignment.id))
        response = client.post("/api/activities", json=payload, headers=headers(athlete))

        assert response.status_code == 201
        db_session.expire_all()
        refreshed = db_session.get(WorkoutAssignment, assignment.id)
        assert refreshed.status == AssignmentStatus.COMPLETED
        assert refreshed.completed_at is not None

        notifications = db_session.query(Notification).filter(Notification.user_id == coach.id).all()
        assert [n.type for n in notifications] == [NotificationType.WORKOUT_COMPLETED]
        assert notifications[0].data == {
            "assignmentId": str(assignment.id),
            "athleteId": str(athlete.id),
            "activityId": response.json()["activity"]["id"],
        }

    def test_assignment_of_someone_else(self, client, make_user, headers, assignment):
        intruder = make_user()
        payload = _payload(workoutAssignmentId=str(assignment.id))
        response = client.post("/api/activities", json=payload, headers=headers(intruder))

        assert response.status_code == 403
        assert response.json()["code"] == "NOT_ASSIGNMENT_OWNER"

    def test_assignment_can_only_be_linked_once(self, client, athlete, headers, assignment):
        payload = _payload(workoutAssignmentId=str(assignment.id))
        assert client.post("/api/activities", json=payload, headers=headers(athlete)).status_code == 201

        response = client.post("/api/activities", json=payload, headers=headers(athlete))
        assert response.status_code == 409

    def test_failed_link_creates_nothing(self, client, db_session, athlete, headers):
        payload = _payload(workoutAssignmentId="00000000-0000-0000-0000-000000000000")
        response = client.post("/api/activities", json=payload, headers=headers(athlete))

        assert response.status_code == 404
        assert db_session.query(Activity).count() == 0
        assert db_session.query(Notification).count() == 0


class TestListActivities:
    """Test GET /api/activities"""

    def test_own_activities_newest_first(self, client, athlete, headers, make_activity):
        older = make_activity(athlete, name="Older", start_time=datetime(2024, 5, 1, tzinfo=timezone.utc))
        newer = make_activity(athlete, name="Newer", start_time=datetime(2024, 5, 2, tzinfo=timezone.utc))

        response = client.get("/api/activities", headers=headers(athlete))

        assert response.status_code == 200
        data = response.json()
        assert [a["id"] for a in data["activities"]] == [str(newer.id), str(older.id)]
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 2, "pages": 1}

    def test_coach_sees_active_athlete(self, client, coach, athlete, link, headers, make_activity):
        link(coach, athlete)
        make_activity(athlete)

        response = client.get(f"/api/activities?userId={athlete.id}", headers=headers(coach))
        assert response.status_code == 200
        assert len(response.json()["activities"]) == 1

    def test_stranger_without_public_activities_is_refused(
        self, client, athlete, make_user, headers, make_activity
    ):
        make_activity(athlete)
        other = make_user()

        response = client.get(f"/api/activities?userId={athlete.id}", headers=headers(other))
        assert response.status_code == 403

    def test_stranger_sees_public_activities_only(self, client, athlete, make_user, headers, make_activity):
        make_activity(athlete, name="Private")
        make_activity(athlete, name="Race day", is_public=True)
        other = make_user()

        response = client.get(f"/api/activities?userId={athlete.id}", headers=headers(other))
        assert [a["name"] for a in response.json()["activities"]] == ["Race day"]

    def test_filters(self, client, athlete, headers, make_activity):
        make_activity(athlete, type="CYCLING", start_time=datetime(2024, 3, 1, tzinfo=timezone.utc))
        make_activity(athlete, type="RUNNING", start_time=datetime(2024, 4, 1, tzinfo=timezone.utc))
        make_activity(athlete, type="RUNNING", source=ActivitySource.STRAVA,
                      start_time=datetime(2024, 5, 1, tzinfo=timezone.utc))

        by_type = client.get("/api/activities?type=RUNNING", headers=headers(athlete)).json()
        by_source = client.get("/api/activities?source=STRAVA", headers=headers(athlete)).json()
        by_date = client.get(
            "/api/activities?from=2024-03-15T00:00:00Z&to=2024-04-15T00:00:00Z", headers=headers(athlete)
        ).json()

        assert by_type["pagination"]["total"] == 2
        assert by_source["pagination"]["total"] == 1
        assert by_date["pagination"]["total"] == 1

    def test_limit_is_capped(self, client, athlete, headers):
        response = client.get("/api/activities?limit=500", headers=headers(athlete))
        assert response.status_code == 400


class TestActivityDetail:
    def test_detail_hides_other_coaches_private_feedback(
        self, client, db_session, coach, athlete, make_user, link, headers, make_activity
    ):
        from models import Feedback

        second_coach = make_user(role="COACH")
        link(coach, athlete)
        link(second_coach, athlete)
        activity = make_activity(athlete)
        db_session.add(Feedback(activity_id=activity.id, coach_id=coach.id, comment="Public note"))
        db_session.add(Feedback(activity_id=activity.id, coach_id=second_coach.id, comment="Mine", is_private=True))
        db_session.commit()

        as_coach = client.get(f"/api/activities/{activity.id}", headers=headers(coach)).json()
        as_second = client.get(f"/api/activities/{activity.id}", headers=headers(second_coach)).json()

        assert [fb["comment"] for fb in as_coach["activity"]["feedback"]] == ["Public note"]
        assert sorted(fb["comment"] for fb in as_second["activity"]["feedback"]) == ["Mine", "Public note"]

    def test_missing_activity(self, client, athlete, headers):
        response = client.get("/api/activities/00000000-0000-0000-0000-000000000000", headers=headers(athlete))
        assert response.status_code == 404
        assert response.json()["code"] == "ACTIVITY_NOT_FOUND"


class TestUpdateActivity:
    def test_owner_can_rename(self, client, athlete, headers, make_activity):
        activity = make_activity(athlete)
        response = client.put(f"/api/activities/{activity.id}", json={"name": "Renamed"}, headers=headers(athlete))

        assert response.status_code == 200
        assert response.json()["activity"]["name"] == "Renamed"
        assert response.json()["activity"]["type"] == "RUNNING"

    def test_other_user_cannot_update(self, client, athlete, coach, link, headers, make_activity):
        link(coach, athlete)
        activity = make_activity(athlete)
        response = client.put(f"/api/activities/{activity.id}", json={"name": "Nope"}, headers=headers(coach))
        assert response.status_code == 403


class TestDeleteActivity:
    """Imported activities are read-only; manual ones can be deleted"""

    def test_imported_activity_cannot_be_deleted(self, client, db_session, athlete, headers, make_activity):
        activity = make_activity(athlete, source=ActivitySource.STRAVA)

        response = client.delete(f"/api/activities/{activity.id}", headers=headers(athlete))

        assert response.status_code == 400
        assert response.json()["code"] == "ACTIVITY_NOT_MANUAL"
        assert db_session.query(Activity).count() == 1

    def test_manual_activity_is_deleted(self, client, db_session, athlete, headers, make_activity):
        activity = make_activity(athlete)

        response = client.delete(f"/api/activities/{activity.id}", headers=headers(athlete))

        assert response.status_code == 200
        assert db_session.query(Activity).count() == 0


class TestActivityStats:
    def test_own_stats(self, client, athlete, headers, make_activity):
        make_activity(athlete, distance=5.0, duration=1800)
        make_activity(athlete, distance=7.5, duration=2400)

        response = client.get("/api/activities/stats?period=week", headers=headers(athlete))

        assert response.status_code == 200
        data = response.json()
        assert data["period"] == "week"
        assert data["totals"]["activities"] == 2
        assert data["totals"]["distance"] == 12.5

    def test_quarter_is_not_a_resource_period(self, client, athlete, headers):
        response = client.get("/api/activities/stats?period=quarter", headers=headers(athlete))
        assert response.status_code == 400

    def test_coach_needs_active_relation(self, client, coach, athlete, link, headers):
        response = client.get(f"/api/activities/stats/{athlete.id}", headers=headers(coach))
        assert response.status_code == 403

        link(coach, athlete)
        response = client.get(f"/api/activities/stats/{athlete.id}", headers=headers(coach))
        assert response.status_code == 200
