from datetime import datetime, timedelta
import logging

from sqlalchemy import func

from models import db, Conversation, ConversationStatus, Message
from utils.conversations import get_for_participant
from utils.db_util import as_utc, commit_session, utc_now
from utils.errors import EmptyBody, InvalidSender, NotFound

logger = logging.getLogger("marketplace_messaging")

# smallest step that keeps created_at strictly increasing within a conversation
TIMESTAMP_STEP = timedelta(microseconds=1)


def append(conversation_id: str, sender_id: str, body: str) -> Message:
    """
    Appends a message to a conversation

    Bumps the conversation's updated_at to the message timestamp and re-activates
    a closed conversation. Message and conversation update commit together.

    Args:
        conversation_id: id of the conversation
        sender_id: id of the sending participant
        body: message text, stored trimmed

    Returns:
        the new message
    """
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFound(f"conversation {conversation_id} not found")
    if not conversation.has_participant(sender_id):
        raise InvalidSender(f"user {sender_id} is not a participant in this conversation")

    if not isinstance(body, str) or not body.strip():
        raise EmptyBody("message body must not be empty")

    created_at = _next_timestamp(conversation.id)
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        body=body.strip(),
        is_read=False,
        created_at=created_at,
    )
    db.session.add(message)

    conversation.updated_at = max(created_at, as_utc(conversation.created_at))
    if conversation.status != ConversationStatus.ACTIVE.value:
        conversation.status = ConversationStatus.ACTIVE.value
    commit_session()

    logger.info(f"message {message.id} appended to conversation {conversation_id}")
    return message


def _next_timestamp(conversation_id: str) -> datetime:
    last = db.session.execute(
        db.select(func.max(Message.created_at)).where(
            Message.conversation_id == conversation_id
        )
    ).scalar()
    now = utc_now()
    if last is None:
        return now
    return max(now, as_utc(last) + TIMESTAMP_STEP)


def list_messages(
    conversation_id: str,
    order: str = "desc",
    limit: int = None,
    before: datetime = None,
) -> list[Message]:
    """
    Lists a conversation's messages ordered by created_at

    Args:
        conversation_id: id of the conversation
        order: "desc" (newest first) or "asc"
        limit: maximum number of messages, None for all
        before: only messages created strictly before this timestamp

    Returns:
        list of messages
    """
    query = db.select(Message).where(Message.conversation_id == conversation_id)
    if before is not None:
        query = query.where(Message.created_at < before)
    if order == "asc":
        query = query.order_by(Message.created_at.asc())
    else:
        query = query.order_by(Message.created_at.desc())
    if limit is not None:
        query = query.limit(limit)
    return db.session.execute(query).scalars().all()


def mark_read(conversation_id: str, reader_id: str) -> int:
    """
    Marks every message from the other participant as read

    Only unread rows are touched, so repeating the call changes nothing.

    Args:
        conversation_id: id of the conversation
        reader_id: id of the participant viewing the conversation

    Returns:
        number of messages flipped to read
    """
    get_for_participant(conversation_id, reader_id)

    updated = (
        db.session.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != reader_id,
            Message.is_read.is_(False),
        )
        .update({Message.is_read: True}, synchronize_session="fetch")
    )
    commit_session()

    if updated:
        logger.info(f"{updated} messages marked read in conversation {conversation_id}")
    return updated


def unread_count(conversation_id: str, viewer_id: str) -> int:
    return db.session.execute(
        db.select(func.count(Message.id)).where(
            Message.conversation_id == conversation_id,
            Message.sender_id != viewer_id,
            Message.is_read.is_(False),
        )
    ).scalar_one()
