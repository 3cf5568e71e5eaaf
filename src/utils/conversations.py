import logging

from sqlalchemy import and_, func, or_

from models import db, Conversation, ConversationStatus, Listing, Message
from utils.db_util import as_utc, commit_session, flush_session, utc_now
from utils.errors import AlreadyExists, NotFound, PermissionDenied
from utils.identity import resolve_identities
from utils.unread import unread_by_conversation

logger = logging.getLogger("marketplace_messaging")


def find_or_create(
    listing_id: str, buyer_id: str, seller_id: str, commit: bool = True
) -> Conversation:
    """
    Gets the conversation for a listing and buyer or creates a new one if it doesn't exist

    The (listing_id, buyer_id) uniqueness constraint decides races: the loser of a
    concurrent insert rolls back and reads the winner's row.

    Args:
        listing_id: id of the listing the thread is about
        buyer_id: id of the buyer
        seller_id: id of the listing's seller
        commit: false to only flush a new row, leaving it to commit with the first message

    Returns:
        the conversation
    """
    if buyer_id == seller_id:
        raise PermissionDenied("cannot start a conversation with yourself")

    existing = _find(listing_id, buyer_id)
    if existing:
        return existing

    # create new conversation
    now = utc_now()
    new_conversation = Conversation(
        listing_id=listing_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        status=ConversationStatus.ACTIVE.value,
        created_at=now,
        updated_at=now,
    )
    db.session.add(new_conversation)
    try:
        if commit:
            commit_session()
        else:
            flush_session()
    except AlreadyExists:
        logger.info(
            f"conversation for listing {listing_id} and buyer {buyer_id} created concurrently"
        )
        existing = _find(listing_id, buyer_id)
        if existing is None:
            raise
        return existing

    logger.info(f"created conversation {new_conversation.id} for listing {listing_id}")
    return new_conversation


def _find(listing_id: str, buyer_id: str):
    return db.session.execute(
        db.select(Conversation).where(
            Conversation.listing_id == listing_id,
            Conversation.buyer_id == buyer_id,
        )
    ).scalar_one_or_none()


def start_conversation(listing_id: str, buyer_id: str, commit: bool = True) -> Conversation:
    listing = db.session.get(Listing, listing_id)
    if listing is None:
        raise NotFound(f"listing {listing_id} not found")
    return find_or_create(listing.id, buyer_id, listing.seller_id, commit=commit)


def get_for_participant(conversation_id: str, user_id: str) -> Conversation:
    """
    Loads a conversation the user takes part in

    Raises:
        NotFound: unknown conversation id
        PermissionDenied: the user is neither the buyer nor the seller
    """
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFound(f"conversation {conversation_id} not found")
    if not conversation.has_participant(user_id):
        raise PermissionDenied("you do not have access to this conversation")
    return conversation


def list_for_user(user_id: str) -> list[dict]:
    """
    Lists the user's conversations, most recently active first

    Each entry carries the last message, the user's unread count, the other
    participant's identity and the listing title.

    Args:
        user_id: id of the viewing user

    Returns:
        list of conversation dicts
    """
    conversations = (
        db.session.execute(
            db.select(Conversation)
            .where(or_(Conversation.buyer_id == user_id, Conversation.seller_id == user_id))
            .order_by(Conversation.updated_at.desc())
        )
        .scalars()
        .all()
    )
    if not conversations:
        return []

    conversation_ids = [c.id for c in conversations]
    last_messages = _last_messages(conversation_ids)
    unread = unread_by_conversation(user_id)
    identities = resolve_identities(c.other_participant(user_id) for c in conversations)

    results = []
    for conversation in conversations:
        last_message = last_messages.get(conversation.id)
        results.append(
            {
                **conversation_to_dict(conversation),
                "listing_title": conversation.listing.title if conversation.listing else None,
                "other_user": identities[conversation.other_participant(user_id)],
                "last_message": message_to_dict(last_message) if last_message else None,
                "unread_count": unread.get(conversation.id, 0),
            }
        )
    return results


def _last_messages(conversation_ids: list[str]) -> dict:
    latest = (
        db.select(
            Message.conversation_id,
            func.max(Message.created_at).label("last_at"),
        )
        .where(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    rows = (
        db.session.execute(
            db.select(Message).join(
                latest,
                and_(
                    Message.conversation_id == latest.c.conversation_id,
                    Message.created_at == latest.c.last_at,
                ),
            )
        )
        .scalars()
        .all()
    )
    return {m.conversation_id: m for m in rows}


def close(conversation_id: str, acting_user_id: str) -> Conversation:
    conversation = get_for_participant(conversation_id, acting_user_id)
    if conversation.status != ConversationStatus.CLOSED.value:
        conversation.status = ConversationStatus.CLOSED.value
        conversation.updated_at = max(utc_now(), as_utc(conversation.created_at))
        commit_session()
        logger.info(f"conversation {conversation_id} closed by {acting_user_id}")
    return conversation


def delete(conversation_id: str, acting_user_id: str) -> int:
    """
    Hard-deletes a conversation and every message in it

    Either participant may delete unilaterally. Conversation and messages go in
    one transaction so no message outlives its conversation.

    Args:
        conversation_id: id of the conversation
        acting_user_id: id of the user asking for deletion

    Returns:
        number of messages removed
    """
    conversation = get_for_participant(conversation_id, acting_user_id)

    deleted_messages = len(conversation.messages)
    db.session.delete(conversation)
    commit_session()

    logger.info(
        f"conversation {conversation_id} deleted by {acting_user_id} "
        f"({deleted_messages} messages removed)"
    )
    return deleted_messages


def conversation_to_dict(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "listing_id": conversation.listing_id,
        "buyer_id": conversation.buyer_id,
        "seller_id": conversation.seller_id,
        "status": conversation.status,
        "created_at": as_utc(conversation.created_at).isoformat(),
        "updated_at": as_utc(conversation.updated_at).isoformat(),
    }


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "body": message.body,
        "is_read": message.is_read,
        "created_at": as_utc(message.created_at).isoformat(),
    }
