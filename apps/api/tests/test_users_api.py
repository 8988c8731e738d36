"""
Integration tests for the Users API: profiles, invitations and the
coach's athlete roster.
"""
from models import CoachAthlete, Notification, NotificationType, RelationStatus


def _invite(client, coach, athlete, headers):
    return client.post(
        "/api/users/invite-athlete",
        json={"email": athlete.email, "message": "Let's train for the marathon"},
        headers=headers(coach),
    )


class TestProfile:
    def test_own_profile_includes_private_fields(self, client, make_user, headers):
        user = make_user(phone="+34 600 000 000")

        data = client.get("/api/users/profile", headers=headers(user)).json()

        assert data["user"]["email"] == user.email
        assert data["user"]["profile"]["phone"] == "+34 600 000 000"

    def test_update_profile(self, client, athlete, headers):
        payload = {"firstName": "Alexa", "bio": "Trail runner", "restingHR": 48, "isPublic": True}

        response = client.put("/api/users/profile", json=payload, headers=headers(athlete))

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["firstName"] == "Alexa"
        assert user["profile"]["bio"] == "Trail runner"
        assert user["profile"]["restingHR"] == 48
        assert user["profile"]["isPublic"] is True

    def test_update_rejects_out_of_range_values(self, client, athlete, headers):
        response = client.put("/api/users/profile", json={"maxHR": 400}, headers=headers(athlete))
        assert response.status_code == 400

    def test_private_profile_of_stranger(self, client, athlete, make_user, headers):
        stranger = make_user()
        response = client.get(f"/api/users/profile/{athlete.id}", headers=headers(stranger))

        assert response.status_code == 403
        assert response.json()["code"] == "PROFILE_PRIVATE"

    def test_public_profile_hides_personal_fields(self, client, make_user, headers):
        public = make_user(is_public=True, phone="123", bio="Hello")
        viewer = make_user()

        response = client.get(f"/api/users/profile/{public.id}", headers=headers(viewer))

        assert response.status_code == 200
        profile = response.json()["user"]["profile"]
        assert profile["bio"] == "Hello"
        assert "phone" not in profile
        assert "email" not in response.json()["user"]

    def test_linked_users_see_each_other(self, client, coach, athlete, link, headers):
        link(coach, athlete)
        assert client.get(f"/api/users/profile/{athlete.id}", headers=headers(coach)).status_code == 200
        assert client.get(f"/api/users/profile/{coach.id}", headers=headers(athlete)).status_code == 200


class TestInvitations:
    """Invite -> accept/reject -> remove"""

    def test_invite_creates_pending_relation(self, client, db_session, coach, athlete, headers):
        response = _invite(client, coach, athlete, headers)

        assert response.status_code == 201
        assert response.json()["relation"]["status"] == RelationStatus.PENDING

        notifications = db_session.query(Notification).filter(Notification.user_id == athlete.id).all()
        assert [n.type for n in notifications] == [NotificationType.COACH_INVITATION]

    def test_duplicate_invitation(self, client, coach, athlete, headers):
        _invite(client, coach, athlete, headers)
        response = _invite(client, coach, athlete, headers)

        assert response.status_code == 409
        assert response.json()["code"] == "RELATION_EXISTS"

    def test_cannot_invite_a_coach(self, client, coach, make_user, headers):
        other_coach = make_user(role="COACH")
        response = _invite(client, coach, other_coach, headers)
        assert response.status_code == 400
        assert response.json()["code"] == "NOT_AN_ATHLETE"

    def test_unknown_email(self, client, coach, headers):
        response = client.post("/api/users/invite-athlete", json={"email": "nobody@example.com"},
                               headers=headers(coach))
        assert response.status_code == 404

    def test_athletes_cannot_invite(self, client, athlete, make_user, headers):
        response = _invite(client, athlete, make_user(), headers)
        assert response.status_code == 403

    def test_accept(self, client, db_session, coach, athlete, headers):
        relation_id = _invite(client, coach, athlete, headers).json()["relation"]["id"]

        response = client.post(f"/api/users/respond-invitation/{relation_id}", json={"accept": True},
                               headers=headers(athlete))

        assert response.status_code == 200
        assert response.json()["relation"]["status"] == RelationStatus.ACTIVE
        coach_notifications = db_session.query(Notification).filter(Notification.user_id == coach.id).all()
        assert [n.type for n in coach_notifications] == [NotificationType.INVITATION_ACCEPTED]

    def test_reject_then_answer_again(self, client, coach, athlete, headers):
        relation_id = _invite(client, coach, athlete, headers).json()["relation"]["id"]
        url = f"/api/users/respond-invitation/{relation_id}"

        rejected = client.post(url, json={"accept": False}, headers=headers(athlete))
        again = client.post(url, json={"accept": True}, headers=headers(athlete))

        assert rejected.json()["relation"]["status"] == RelationStatus.REJECTED
        assert again.status_code == 400
        assert again.json()["code"] == "INVITATION_CLOSED"

    def test_only_the_invited_athlete_answers(self, client, coach, athlete, make_user, headers):
        relation_id = _invite(client, coach, athlete, headers).json()["relation"]["id"]

        response = client.post(f"/api/users/respond-invitation/{relation_id}", json={"accept": True},
                               headers=headers(make_user()))
        assert response.status_code == 403

    def test_remove_athlete(self, client, db_session, coach, athlete, link, headers):
        relation = link(coach, athlete)

        response = client.delete(f"/api/users/athletes/{relation.id}", headers=headers(coach))
        again = client.delete(f"/api/users/athletes/{relation.id}", headers=headers(coach))

        assert response.status_code == 200
        assert response.json()["relation"]["status"] == RelationStatus.INACTIVE
        assert again.status_code == 400
        db_session.expire_all()
        assert db_session.get(CoachAthlete, relation.id).status == RelationStatus.INACTIVE


class TestAthleteRoster:
    def test_lists_active_by_default(self, client, coach, make_user, link, headers, make_activity):
        active = make_user(first_name="Ana")
        pending = make_user(first_name="Beto")
        link(coach, active)
        link(coach, pending, status=RelationStatus.PENDING)
        make_activity(active)

        data = client.get("/api/users/athletes", headers=headers(coach)).json()

        assert data["pagination"]["total"] == 1
        row = data["athletes"][0]
        assert row["athlete"]["firstName"] == "Ana"
        assert row["status"] == RelationStatus.ACTIVE
        assert row["recentActivities"] == 1

    def test_status_filter_and_search(self, client, coach, make_user, link, headers):
        link(coach, make_user(first_name="Beto"), status=RelationStatus.PENDING)
        link(coach, make_user(first_name="Bruno"), status=RelationStatus.PENDING)

        pending = client.get("/api/users/athletes?status=PENDING", headers=headers(coach)).json()
        searched = client.get("/api/users/athletes?status=PENDING&search=brun", headers=headers(coach)).json()

        assert pending["pagination"]["total"] == 2
        assert [a["athlete"]["firstName"] for a in searched["athletes"]] == ["Bruno"]

    def test_bad_status(self, client, coach, headers):
        response = client.get("/api/users/athletes?status=BLOCKED", headers=headers(coach))
        assert response.status_code == 400


class TestSearch:
    def test_only_public_active_others(self, client, make_user, headers):
        me = make_user(first_name="Marta", is_public=True)
        make_user(first_name="Mario", is_public=True)
        make_user(first_name="Marco")
        make_user(first_name="Mariana", is_public=True, is_active=False)

        data = client.get("/api/users/search?q=mar", headers=headers(me)).json()
        assert [u["firstName"] for u in data["users"]] == ["Mario"]

    def test_query_too_short(self, client, athlete, headers):
        assert client.get("/api/users/search?q=a", headers=headers(athlete)).status_code == 400
