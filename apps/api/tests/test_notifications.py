"""
Tests for post-commit notification delivery.

Notifications are staged on a session and only written once it commits;
a rollback discards them and a delivery failure never reaches the caller.
"""
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from models import Notification, NotificationType
from services.notifications import (
    PendingNotification,
    deliver_notification,
    list_notifications,
    mark_notification_read,
    pending_notifications,
    queue_notification,
    unread_notifications_count,
)


def _queue(db, user, **overrides):
    fields = {
        "type": NotificationType.MESSAGE_RECEIVED,
        "title": "New message",
        "message": "Carla sent you a message",
        "data": {"senderId": user.id},
    }
    fields.update(overrides)
    return queue_notification(db, user.id, **fields)


class TestStaging:
    def test_written_after_commit(self, db_session, athlete):
        _queue(db_session, athlete)
        assert db_session.query(Notification).count() == 0

        db_session.commit()

        stored = db_session.query(Notification).one()
        assert stored.user_id == athlete.id
        assert stored.data == {"senderId": str(athlete.id)}
        assert pending_notifications(db_session) == []

    def test_discarded_on_rollback(self, db_session, athlete):
        _queue(db_session, athlete)
        assert db_session.query(Notification).count() == 0
        db_session.rollback()
        db_session.commit()

        assert db_session.query(Notification).count() == 0

    def test_failed_delivery_does_not_raise(self, db_session, athlete):
        _queue(db_session, athlete)

        with patch("services.notifications._write_notification", side_effect=OperationalError("INSERT", {}, None)):
            db_session.commit()

        assert db_session.query(Notification).count() == 0


class TestDeliver:
    def test_retries_then_succeeds(self, athlete):
        from core.database import SessionLocal
        from services import notifications

        item = PendingNotification(athlete.id, NotificationType.SYNC_COMPLETED, "Sync completed", "0 activities")
        real_write = notifications._write_notification
        calls = []

        def flaky(db, pending):
            calls.append(pending)
            if len(calls) == 1:
                raise OperationalError("INSERT", {}, None)
            real_write(db, pending)

        with patch("services.notifications._write_notification", side_effect=flaky):
            assert deliver_notification(SessionLocal, item) is True

        assert len(calls) == 2

    def test_gives_up_after_max_attempts(self, athlete):
        from core.database import SessionLocal

        item = PendingNotification(athlete.id, NotificationType.SYNC_COMPLETED, "Sync completed", "0 activities")
        with patch("services.notifications._write_notification",
                   side_effect=OperationalError("INSERT", {}, None)) as write:
            assert deliver_notification(SessionLocal, item) is False

        assert write.call_count == 3

    def test_backoff_doubles_between_attempts(self, athlete):
        from core.config import settings
        from core.database import SessionLocal

        item = PendingNotification(athlete.id, NotificationType.SYNC_COMPLETED, "Sync completed", "0 activities")
        with patch.object(settings, "NOTIFICATION_RETRY_DELAY_S", 0.5), \
                patch("services.notifications.time.sleep") as sleep, \
                patch("services.notifications._write_notification",
                      side_effect=OperationalError("INSERT", {}, None)):
            deliver_notification(SessionLocal, item)

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_failing_notification_does_not_block_the_next(self, db_session, athlete):
        from services import notifications

        real_write = notifications._write_notification

        def fail_feedback(db, pending):
            if pending.type == NotificationType.FEEDBACK_RECEIVED:
                raise OperationalError("INSERT", {}, None)
            real_write(db, pending)

        _queue(db_session, athlete, type=NotificationType.FEEDBACK_RECEIVED, title="Feedback")
        _queue(db_session, athlete)
        with patch("services.notifications._write_notification", side_effect=fail_feedback):
            db_session.commit()

        types = [n.type for n in db_session.query(Notification).all()]
        assert types == [NotificationType.MESSAGE_RECEIVED]


class TestQueries:
    def test_unread_and_mark_read(self, db_session, athlete):
        _queue(db_session, athlete)
        _queue(db_session, athlete, type=NotificationType.WORKOUT_ASSIGNED, title="New workout")
        db_session.commit()

        assert unread_notifications_count(db_session, athlete.id) == 2

        notification = list_notifications(db_session, athlete.id, limit=1)[0]
        mark_notification_read(notification)
        db_session.commit()

        assert notification.read_at is not None
        assert unread_notifications_count(db_session, athlete.id) == 1
        assert len(list_notifications(db_session, athlete.id, unread_only=True)) == 1
