"""
Notification Service

Notifications are side effects of mutations (feedback created, workout
assigned, message sent...). Handlers stage them on the request session
with ``queue_notification``; they are written only after that session
commits, in their own short transaction, with retries. A delivery failure
is logged and never touches the primary write. A rollback discards
anything staged.

Delivery runs inline in the ``after_commit`` hook of the committing
request. While the database is failing, the retry backoff
(``NOTIFICATION_RETRY_DELAY_S`` doubled per attempt, up to
``NOTIFICATION_MAX_ATTEMPTS`` attempts) delays that request's response,
never its committed data. Each staged notification is retried on its own.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from models import Notification, utc_now

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_notifications"


@dataclass
class PendingNotification:
    user_id: UUID
    type: str
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


def queue_notification(
    db: Session,
    user_id: UUID,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> PendingNotification:
    """Stage a notification to be written once ``db`` commits."""
    pending = PendingNotification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data={k: (str(v) if isinstance(v, UUID) else v) for k, v in (data or {}).items()},
    )
    db.info.setdefault(PENDING_KEY, []).append(pending)
    return pending


def pending_notifications(db: Session) -> List[PendingNotification]:
    return list(db.info.get(PENDING_KEY, []))


def _write_notification(db: Session, item: PendingNotification):
    db.add(Notification(
        user_id=item.user_id,
        type=item.type,
        title=item.title,
        message=item.message,
        data=item.data,
    ))
    db.commit()


def deliver_notification(session_factory, item: PendingNotification) -> bool:
    """Write one notification, retrying with exponential backoff."""
    max_attempts = settings.NOTIFICATION_MAX_ATTEMPTS
    retry_delay = settings.NOTIFICATION_RETRY_DELAY_S

    for attempt in range(max_attempts):
        db = session_factory()
        try:
            _write_notification(db, item)
            logger.debug(f"Notification {item.type} delivered to user {item.user_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            if attempt == max_attempts - 1:
                logger.error(
                    f"Failed to deliver notification after {max_attempts} attempts: {e}",
                    extra={
                        "extra_fields": {
                            "notification_type": item.type,
                            "user_id": str(item.user_id),
                        }
                    },
                )
                return False
            logger.warning(f"Notification delivery attempt {attempt + 1} failed, retrying...")
            time.sleep(retry_delay * (2 ** attempt))
        finally:
            db.close()
    return False


@event.listens_for(Session, "after_commit")
def _deliver_after_commit(session: Session):
    pending = session.info.pop(PENDING_KEY, None)
    if not pending:
        return

    try:
        session_factory = sessionmaker(bind=session.get_bind(), expire_on_commit=False)
        for item in pending:
            deliver_notification(session_factory, item)
    except Exception:
        # The primary transaction is already committed; do not surface this to the caller
        logger.exception("Notification delivery crashed after commit")


@event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session: Session, previous_transaction):
    if session.info.pop(PENDING_KEY, None):
        logger.debug("Discarded staged notifications after rollback")


def list_notifications(db: Session, user_id: UUID, limit: int = 10, unread_only: bool = False):
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id).limit(limit).all()


def unread_notifications_count(db: Session, user_id: UUID) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).count()


def mark_notification_read(notification: Notification):
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utc_now()
