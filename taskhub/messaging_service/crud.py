from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import or_, and_, func, select
from pydantic import TypeAdapter
from typing import List, Optional
import logging

from taskhub.database import utcnow
from taskhub.errors import AuthorizationError, NotFoundError, ValidationError
from taskhub.messaging_service.models import (
    Conversation, Message, MessageReaction, MessageDeletion, MessageStatus
)
from taskhub.messaging_service.schemas import Attachment
from taskhub.user_service.crud import get_users, require_user

logger = logging.getLogger(__name__)

ATTACHMENT_PLACEHOLDER = "[Attachment]"

_attachments_adapter = TypeAdapter(List[Attachment])


def _dump_attachments(attachments) -> list:
    if not attachments:
        return []
    items = _attachments_adapter.validate_python(
        [a.model_dump() if hasattr(a, "model_dump") else a for a in attachments]
    )
    return [item.model_dump(mode="json") for item in items]


def _sorted_pair(user_a: int, user_b: int):
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def _not_deleted_for(user_id: int):
    hidden = select(MessageDeletion.message_id).where(MessageDeletion.user_id == user_id)
    return ~Message.id.in_(hidden)


# ------- Conversation directory -------
def find_conversation(db: Session, user_a: int, user_b: int):
    participant1_id, participant2_id = _sorted_pair(user_a, user_b)
    return db.query(Conversation).filter(
        Conversation.participant1_id == participant1_id,
        Conversation.participant2_id == participant2_id,
    ).first()


def _is_different_context(conversation: Conversation, task_id: Optional[int]) -> bool:
    return task_id is not None and conversation.task_id != task_id


def start_or_get_conversation(
    db: Session,
    initiator_id: int,
    recipient_id: int,
    task_id: Optional[int] = None,
    proposal_id: Optional[int] = None,
):
    """Return ``(conversation, is_new, is_different_context)`` for the pair.

    The context (task/proposal) is recorded on creation only and never used for lookup,
    so two users always share exactly one thread. Concurrent first contacts are resolved
    by the unique constraint on the sorted pair: the loser re-reads the winner's row.
    """
    if initiator_id == recipient_id:
        raise ValidationError("Cannot start conversation with yourself")
    require_user(db, recipient_id, "Recipient user not found")

    existing = find_conversation(db, initiator_id, recipient_id)
    if existing:
        return existing, False, _is_different_context(existing, task_id)

    participant1_id, participant2_id = _sorted_pair(initiator_id, recipient_id)
    conversation = Conversation(
        participant1_id=participant1_id,
        participant2_id=participant2_id,
        is_task_conversation=task_id is not None,
        task_id=task_id,
        proposal_id=proposal_id,
        pinned_for=[],
        muted_for=[],
    )
    db.add(conversation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_conversation(db, initiator_id, recipient_id)
        if not existing:
            raise
        logger.info("Conversation %s created concurrently, reusing it", existing.id)
        return existing, False, _is_different_context(existing, task_id)

    db.refresh(conversation)
    return conversation, True, False


def get_conversation_for(db: Session, conversation_id: int, user_id: int) -> Conversation:
    """Load a conversation the caller takes part in; outsiders get NotFound, not 403."""
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation or not conversation.has_participant(user_id):
        raise NotFoundError("Conversation not found")
    return conversation


def _set_flag(db: Session, conversation_id: int, user_id: int, column: str, value: bool):
    conversation = get_conversation_for(db, conversation_id, user_id)
    members = [uid for uid in (getattr(conversation, column) or []) if uid != user_id]
    if value:
        members.append(user_id)
    # Assign a new list so the JSON column is flagged dirty
    setattr(conversation, column, members)
    db.commit()
    db.refresh(conversation)
    return conversation


def set_pinned(db: Session, conversation_id: int, user_id: int, pinned: bool):
    return _set_flag(db, conversation_id, user_id, "pinned_for", pinned)


def set_muted(db: Session, conversation_id: int, user_id: int, muted: bool):
    return _set_flag(db, conversation_id, user_id, "muted_for", muted)


def list_inbox(db: Session, user_id: int, page: int = 1, limit: int = 20):
    activity = func.coalesce(Conversation.last_message_at, Conversation.updated_at)
    conversations = (
        db.query(Conversation)
        .filter(or_(Conversation.participant1_id == user_id, Conversation.participant2_id == user_id))
        .order_by(activity.desc(), Conversation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    if not conversations:
        return []

    conversation_ids = [c.id for c in conversations]
    unread_rows = (
        db.query(Message.conversation_id, func.count(Message.id))
        .filter(
            Message.conversation_id.in_(conversation_ids),
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
        .all()
    )
    unread = dict(unread_rows)
    users = get_users(db, [c.other_participant(user_id) for c in conversations])

    entries = []
    for conversation in conversations:
        other = users.get(conversation.other_participant(user_id))
        last_message = None
        if conversation.last_message_at:
            last_message = {
                "text": conversation.last_message_text,
                "sender_id": conversation.last_message_sender_id,
                "created_at": conversation.last_message_at,
            }
        entries.append({
            "conversation_id": conversation.id,
            "other_user": {
                "id": other.id,
                "display_name": other.display_name,
                "profile_image": other.profile_image,
            } if other else None,
            "is_task_conversation": bool(conversation.is_task_conversation),
            "task_id": conversation.task_id,
            "proposal_id": conversation.proposal_id,
            "last_message": last_message,
            "unread_count": unread.get(conversation.id, 0),
            "is_pinned": user_id in (conversation.pinned_for or []),
            "is_muted": user_id in (conversation.muted_for or []),
            "updated_at": conversation.updated_at,
        })
    return entries


# ------- Messages -------
def get_message_for(db: Session, message_id: int, user_id: int) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message or user_id not in (message.sender_id, message.receiver_id):
        raise NotFoundError("Message not found")
    return message


def send_message(
    db: Session,
    sender_id: int,
    conversation_id: Optional[int] = None,
    receiver_id: Optional[int] = None,
    text: Optional[str] = None,
    attachments=None,
    reply_to_id: Optional[int] = None,
    task_id: Optional[int] = None,
    proposal_id: Optional[int] = None,
):
    """Persist a message and refresh the conversation's inbox summary.

    Returns ``(message, conversation, conversation_created)``. Addressing by
    ``receiver_id`` finds or creates the pair's conversation first.
    """
    text = (text or "").strip()
    stored_attachments = _dump_attachments(attachments)
    if not text and not stored_attachments:
        raise ValidationError("Message must contain text or attachments")

    conversation_created = False
    if conversation_id is not None:
        conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
        if not conversation:
            raise NotFoundError("Conversation not found")
        if not conversation.has_participant(sender_id):
            raise AuthorizationError("Sender is not a participant in this conversation")
    elif receiver_id is not None:
        conversation, conversation_created, _ = start_or_get_conversation(
            db, sender_id, receiver_id, task_id=task_id, proposal_id=proposal_id
        )
    else:
        raise ValidationError("conversation_id or receiver_id required")

    if reply_to_id is not None:
        replied = db.query(Message.conversation_id).filter(Message.id == reply_to_id).first()
        if not replied or replied.conversation_id != conversation.id:
            raise ValidationError("reply_to_id must reference a message in this conversation")

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        receiver_id=conversation.other_participant(sender_id),
        text=text,
        attachments=stored_attachments,
        reply_to_id=reply_to_id,
        status=MessageStatus.SENT,
        is_read=False,
        created_at=utcnow(),
    )
    db.add(message)

    conversation.last_message_text = text or ATTACHMENT_PLACEHOLDER
    conversation.last_message_sender_id = sender_id
    conversation.last_message_at = message.created_at

    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    return message, conversation, conversation_created


def list_messages(db: Session, conversation_id: int, user_id: int, page: int = 1, limit: int = 20):
    """Return one page of the caller's visible messages (oldest first) and mark incoming ones read.

    The second element is the number of messages that turned read by this call.
    """
    conversation = get_conversation_for(db, conversation_id, user_id)
    messages = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id, _not_deleted_for(user_id))
        .order_by(Message.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    # The commit expires the loaded rows, so they reload with the new read state
    _, seen = mark_conversation_read(db, conversation.id, user_id)
    return list(reversed(messages)), seen


def mark_conversation_read(db: Session, conversation_id: int, user_id: int):
    """Bulk read transition for everything addressed to the caller; returns (conversation, count)."""
    conversation = get_conversation_for(db, conversation_id, user_id)
    count = (
        db.query(Message)
        .filter(
            and_(
                Message.conversation_id == conversation.id,
                Message.receiver_id == user_id,
                Message.is_read.is_(False),
            )
        )
        .update(
            {"is_read": True, "read_at": utcnow(), "status": MessageStatus.SEEN},
            synchronize_session=False,
        )
    )
    db.commit()
    return conversation, count


def mark_message_read(db: Session, message_id: int, user_id: int):
    message = db.query(Message).filter(Message.id == message_id).first()
    # Only the receiver may mark a message read; anyone else sees it as missing
    if not message or message.receiver_id != user_id:
        raise NotFoundError("Message not found")
    if not message.is_read:
        message.is_read = True
        message.read_at = utcnow()
        message.status = MessageStatus.SEEN
        db.commit()
        db.refresh(message)
    return message


def unread_total(db: Session, user_id: int) -> int:
    return db.query(func.count(Message.id)).filter(
        Message.receiver_id == user_id,
        Message.is_read.is_(False),
    ).scalar() or 0


def edit_message(
    db: Session,
    message_id: int,
    user_id: int,
    text: Optional[str] = None,
    attachments_to_remove=None,
    new_attachments=None,
):
    message = get_message_for(db, message_id, user_id)
    if message.sender_id != user_id:
        raise AuthorizationError("Only the sender can edit this message")

    attachments = list(message.attachments or [])
    if attachments_to_remove:
        removed = set(attachments_to_remove)
        attachments = [a for a in attachments if a.get("url") not in removed]
    attachments.extend(_dump_attachments(new_attachments))

    new_text = message.text if text is None else text.strip()
    if not new_text and not attachments:
        raise ValidationError("Message must contain text or attachments")

    message.text = new_text
    message.attachments = attachments
    message.is_edited = True
    message.edited_at = utcnow()
    db.commit()
    db.refresh(message)
    return message


def soft_delete_message(db: Session, message_id: int, user_id: int):
    """Hide the message for the caller only. Repeating the call changes nothing."""
    message = get_message_for(db, message_id, user_id)
    if user_id in message.deleted_by:
        return message

    db.add(MessageDeletion(message_id=message.id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delete by the same user already recorded it
        db.rollback()
    db.refresh(message)
    return message


def toggle_reaction(db: Session, message_id: int, user_id: int, emoji: str):
    """Add the caller's ``emoji`` reaction, or remove it when it is already there."""
    emoji = (emoji or "").strip()
    if not emoji:
        raise ValidationError("emoji required")
    message = get_message_for(db, message_id, user_id)

    existing = db.query(MessageReaction).filter(
        MessageReaction.message_id == message.id,
        MessageReaction.user_id == user_id,
        MessageReaction.emoji == emoji,
    ).first()
    if existing:
        db.delete(existing)
    else:
        db.add(MessageReaction(message_id=message.id, user_id=user_id, emoji=emoji))
    try:
        db.commit()
    except IntegrityError:
        # The same reaction from a concurrent request landed first
        db.rollback()
    db.refresh(message)
    return message


def search_messages(db: Session, user_id: int, query: str, page: int = 1, limit: int = 20):
    query = (query or "").strip()
    if not query:
        raise ValidationError("query (q) required")
    pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    return (
        db.query(Message)
        .filter(
            or_(Message.sender_id == user_id, Message.receiver_id == user_id),
            Message.text.ilike(pattern, escape="\\"),
            _not_deleted_for(user_id),
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
