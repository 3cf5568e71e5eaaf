"""
Unread aggregation derived from the message ledger.

Nothing here is stored or cached; every call recomputes from message read
flags, since the other participant can change them at any time.
"""

from sqlalchemy import func, or_

from models import db, Conversation, Message
from utils.db_util import as_utc


def _unread_rows(user_id: str):
    return db.session.execute(
        db.select(
            Message.conversation_id,
            func.count(Message.id).label("unread_count"),
        )
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
    ).all()


def unread_by_conversation(user_id: str) -> dict:
    return {row.conversation_id: row.unread_count for row in _unread_rows(user_id)}


def _last_message_times(conversation_ids: list) -> dict:
    if not conversation_ids:
        return {}
    rows = db.session.execute(
        db.select(Message.conversation_id, func.max(Message.created_at).label("last_at"))
        .where(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
    ).all()
    return {row.conversation_id: as_utc(row.last_at) for row in rows}


def unread_summary(user_id: str) -> dict:
    """
    Computes the inbox badge for a user

    Args:
        user_id: id of the viewing user

    Returns:
        dict with "total" (global unread count) and "conversations", the
        conversations with unread messages ordered by unread count, ties broken
        by the most recent message
    """
    unread = unread_by_conversation(user_id)
    last_times = _last_message_times(list(unread))

    entries = [
        {
            "conversation_id": conversation_id,
            "unread_count": count,
            "last_message_at": last_times[conversation_id],
        }
        for conversation_id, count in unread.items()
    ]
    entries.sort(key=lambda e: (e["unread_count"], e["last_message_at"]), reverse=True)

    for entry in entries:
        entry["last_message_at"] = entry["last_message_at"].isoformat()

    return {"total": sum(unread.values()), "conversations": entries}
