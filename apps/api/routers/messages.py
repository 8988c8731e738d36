"""
Messages API

Direct messages between users linked by an ACTIVE coaching relation
(either direction). Replies hang off a parent message; listings show
top-level messages with their reply counts.
"""
import logging
from typing import Dict, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.permissions import active_relation_lookup, can_view_user_data
from models import Message, NotificationType, User, utc_now
from schemas import MessageCreate, MessageReply
from services.serializers import message_dict, pagination, user_summary
from services.notifications import queue_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])

REPLY_PREFIX = "Re: "


def _is_participant(message: Message, user: User) -> bool:
    return user.id in (message.sender_id, message.recipient_id)


def _get_message(db: Session, message_id: UUID) -> Message:
    message = (
        db.query(Message)
        .options(joinedload(Message.sender), joinedload(Message.recipient))
        .filter(Message.id == message_id)
        .first()
    )
    if not message:
        raise NotFoundError("Message not found", error_code="MESSAGE_NOT_FOUND")
    return message


def _get_participant_message(db: Session, message_id: UUID, user: User) -> Message:
    message = _get_message(db, message_id)
    if not _is_participant(message, user):
        raise ForbiddenError("You are not part of this conversation", error_code="RESOURCE_ACCESS_DENIED")
    return message


def _reply_subject(subject: Optional[str]) -> Optional[str]:
    if not subject:
        return None
    return subject if subject.startswith(REPLY_PREFIX) else f"{REPLY_PREFIX}{subject}"


def _reply_counts(db: Session, message_ids) -> Dict[UUID, int]:
    if not message_ids:
        return {}
    return dict(
        db.query(Message.parent_id, func.count(Message.id))
        .filter(Message.parent_id.in_(message_ids))
        .group_by(Message.parent_id)
        .all()
    )


def _notify_recipient(db: Session, message: Message, sender: User):
    queue_notification(
        db,
        message.recipient_id,
        NotificationType.MESSAGE_RECEIVED,
        "New message",
        f"{sender.full_name} sent you a message",
        {"messageId": message.id, "senderId": sender.id},
    )


@router.post("", status_code=201)
def send_message(
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Send a message.

    The recipient must accept messages and share an ACTIVE coaching
    relation with the sender. ``parentId`` must point at a message the
    sender takes part in.
    """
    if payload.recipient_id == current_user.id:
        raise ValidationError("You cannot message yourself", error_code="INVALID_RECIPIENT")

    recipient = db.query(User).filter(User.id == payload.recipient_id, User.is_active.is_(True)).first()
    if not recipient:
        raise NotFoundError("Recipient not found", error_code="USER_NOT_FOUND")
    if recipient.profile is not None and not recipient.profile.allow_messages:
        raise ForbiddenError("This user does not accept messages", error_code="MESSAGES_DISABLED")
    if not can_view_user_data(current_user, recipient.id, active_relation_lookup(db), symmetric=True):
        raise ForbiddenError("You can only message your coach or athletes", error_code="RELATION_REQUIRED")

    if payload.parent_id:
        parent = _get_message(db, payload.parent_id)
        if not _is_participant(parent, current_user):
            raise ForbiddenError("You are not part of this conversation", error_code="RESOURCE_ACCESS_DENIED")

    message = Message(
        sender_id=current_user.id,
        recipient_id=recipient.id,
        parent_id=payload.parent_id,
        subject=payload.subject,
        content=payload.content,
        type=payload.type,
    )
    db.add(message)
    db.flush()
    _notify_recipient(db, message, current_user)
    db.commit()

    return {"message": "Message sent", "data": message_dict(_get_message(db, message.id))}


@router.get("")
def list_messages(
    type: Literal["sent", "received", "all"] = Query("all"),
    unread_only: bool = Query(False, alias="unreadOnly"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Message).filter(Message.parent_id.is_(None))

    if type == "sent":
        query = query.filter(Message.sender_id == current_user.id)
    elif type == "received":
        query = query.filter(Message.recipient_id == current_user.id)
    else:
        query = query.filter(or_(Message.sender_id == current_user.id, Message.recipient_id == current_user.id))

    if unread_only:
        query = query.filter(Message.recipient_id == current_user.id, Message.is_read.is_(False))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Message.subject.ilike(pattern), Message.content.ilike(pattern)))

    total = query.count()
    messages = (
        query.options(joinedload(Message.sender), joinedload(Message.recipient))
        .order_by(Message.created_at.desc(), Message.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    counts = _reply_counts(db, [m.id for m in messages])

    return {
        "messages": [message_dict(m, replies_count=counts.get(m.id, 0)) for m in messages],
        "pagination": pagination(page, limit, total),
    }


@router.get("/stats/unread")
def unread_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(Message.type, func.count(Message.id))
        .filter(Message.recipient_id == current_user.id, Message.is_read.is_(False))
        .group_by(Message.type)
        .all()
    )
    by_type = {message_type: count for message_type, count in rows}
    return {"unreadCount": sum(by_type.values()), "byType": by_type}


@router.get("/conversations")
def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """One entry per counterpart, most recent conversation first."""
    messages = (
        db.query(Message)
        .options(joinedload(Message.sender), joinedload(Message.recipient))
        .filter(or_(Message.sender_id == current_user.id, Message.recipient_id == current_user.id))
        .order_by(Message.created_at.desc(), Message.id)
        .all()
    )

    conversations: Dict[UUID, dict] = {}
    for message in messages:
        outgoing = message.sender_id == current_user.id
        other = message.recipient if outgoing else message.sender
        entry = conversations.get(other.id)
        if entry is None:
            # newest first, so the first message seen is the latest one
            entry = conversations[other.id] = {
                "user": user_summary(other),
                "lastMessage": message_dict(message),
                "unreadCount": 0,
                "totalMessages": 0,
            }
        entry["totalMessages"] += 1
        if not outgoing and not message.is_read:
            entry["unreadCount"] += 1

    ordered = list(conversations.values())
    return {
        "conversations": ordered[:limit],
        "hasMore": len(ordered) > limit,
    }


@router.get("/{message_id}")
def get_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open a message; the recipient opening it marks it read."""
    message = _get_participant_message(db, message_id, current_user)

    if message.recipient_id == current_user.id and not message.is_read:
        message.is_read = True
        message.read_at = utc_now()
        db.commit()

    return {
        "message": {
            **message_dict(message),
            "parent": message_dict(message.parent) if message.parent else None,
            "replies": [message_dict(reply) for reply in message.replies],
        }
    }


@router.post("/{message_id}/reply", status_code=201)
def reply_to_message(
    message_id: UUID,
    payload: MessageReply,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    original = _get_participant_message(db, message_id, current_user)
    recipient_id = original.recipient_id if original.sender_id == current_user.id else original.sender_id

    reply = Message(
        sender_id=current_user.id,
        recipient_id=recipient_id,
        parent_id=original.id,
        subject=_reply_subject(payload.subject or original.subject),
        content=payload.content,
        type=original.type,
    )
    db.add(reply)
    db.flush()
    _notify_recipient(db, reply, current_user)
    db.commit()

    return {"message": "Reply sent", "data": message_dict(_get_message(db, reply.id))}


@router.put("/{message_id}/read")
def mark_message_read(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = _get_message(db, message_id)
    if message.recipient_id != current_user.id:
        raise ForbiddenError("Only the recipient can mark a message as read", error_code="NOT_RECIPIENT")

    if not message.is_read:
        message.is_read = True
        message.read_at = utc_now()
        db.commit()

    return {"message": "Message marked as read", "data": message_dict(message)}


@router.delete("/{message_id}")
def delete_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = _get_message(db, message_id)
    if message.sender_id != current_user.id:
        raise ForbiddenError("Only the sender can delete a message", error_code="NOT_SENDER")
    if message.replies:
        raise ValidationError("Messages with replies cannot be deleted", error_code="MESSAGE_HAS_REPLIES")

    db.delete(message)
    db.commit()
    return {"message": "Message deleted"}
