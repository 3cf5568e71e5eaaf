"""
Interaction triggers: primary actions that fan out notifications.

Every trigger commits its primary write first and only then dispatches. A
failed dispatch is logged and dropped, it never undoes or fails the action.
"""

from decimal import Decimal
import logging

from flask import current_app
from sqlalchemy import func

from models import (
    db,
    Favorite,
    Listing,
    Notification,
    NotificationType,
    Review,
    Store,
    StoreFollower,
    User,
)
from utils import conversations, messages, notifications
from utils.db_util import as_utc, commit_session, utc_now
from utils.errors import AlreadyExists, EmptyBody, MessagingError, NotFound, PermissionDenied
from utils.identity import display_name

logger = logging.getLogger("marketplace_messaging")

# listing prices are stored with two decimal places
CENTS = Decimal("0.01")


def dispatch(actor_id: str, recipient_id: str, notification_type, title: str, **kwargs):
    """
    Fire-and-forget notification

    Skips self-notification and swallows every dispatcher failure.

    Args:
        actor_id: id of the user whose action caused the event
        recipient_id: id of the user to notify
        notification_type: NotificationType
        title: notification title
        **kwargs: body, link, related_id

    Returns:
        the stored notification, or None when skipped or failed
    """
    if recipient_id is None or recipient_id == actor_id:
        return None

    try:
        return notifications.notify(
            recipient_id, notification_type, title, actor_id=actor_id, **kwargs
        )
    except Exception:
        db.session.rollback()
        logger.exception(
            f"failed to dispatch {getattr(notification_type, 'value', notification_type)} "
            f"notification to user {recipient_id}"
        )
        return None


def fan_out(actor_id: str, recipient_ids, notification_type, title: str, **kwargs) -> int:
    """
    Dispatches one notification per distinct recipient

    Returns:
        number of notifications stored
    """
    sent = 0
    for recipient_id in dict.fromkeys(recipient_ids):
        if dispatch(actor_id, recipient_id, notification_type, title, **kwargs):
            sent += 1
    return sent


def to_cents(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENTS)


def _get_store(store_id: str) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound(f"store {store_id} not found")
    return store


def get_listing(listing_id: str) -> Listing:
    listing = db.session.get(Listing, listing_id)
    if listing is None:
        raise NotFound(f"listing {listing_id} not found")
    return listing


def _store_link(store: Store) -> str:
    return f"/store/{store.slug or store.id}"


# follow / unfollow


def follow_store(store_id: str, actor: User) -> dict:
    """
    Follows a store

    Only the insert (the not-following -> following edge) notifies the owner.
    A duplicate follow is reported as already following.

    Args:
        store_id: id of the store
        actor: the user following

    Returns:
        dict with "following", "created" and "follower_count"
    """
    store = _get_store(store_id)
    owner_id = store.owner_id
    link = _store_link(store)

    db.session.add(StoreFollower(store_id=store_id, user_id=actor.id))
    try:
        commit_session()
    except AlreadyExists:
        logger.info(f"user {actor.id} already follows store {store_id}")
        return {
            "store_id": store_id,
            "following": True,
            "created": False,
            "follower_count": follower_count(store_id),
        }

    logger.info(f"user {actor.id} followed store {store_id}")

    if not _already_notified_follow(owner_id, actor.id, store_id):
        dispatch(
            actor.id,
            owner_id,
            NotificationType.NEW_FOLLOWER,
            f"{display_name(actor, 'Someone')} started following your store",
            link=link,
            related_id=store_id,
        )

    return {
        "store_id": store_id,
        "following": True,
        "created": True,
        "follower_count": follower_count(store_id),
    }


def _already_notified_follow(owner_id: str, actor_id: str, store_id: str) -> bool:
    # unfollow/re-follow toggling notifies the owner once per follower
    return (
        db.session.execute(
            db.select(Notification.id)
            .where(
                Notification.user_id == owner_id,
                Notification.actor_id == actor_id,
                Notification.type == NotificationType.NEW_FOLLOWER,
                Notification.related_id == store_id,
            )
            .limit(1)
        ).first()
        is not None
    )


def unfollow_store(store_id: str, actor: User) -> dict:
    _get_store(store_id)
    removed = (
        db.session.query(StoreFollower)
        .filter(StoreFollower.store_id == store_id, StoreFollower.user_id == actor.id)
        .delete(synchronize_session=False)
    )
    commit_session()

    if removed:
        logger.info(f"user {actor.id} unfollowed store {store_id}")
    return {
        "store_id": store_id,
        "following": False,
        "removed": bool(removed),
        "follower_count": follower_count(store_id),
    }


def follower_count(store_id: str) -> int:
    return db.session.execute(
        db.select(func.count(StoreFollower.id)).where(StoreFollower.store_id == store_id)
    ).scalar_one()


def is_following(store_id: str, user_id: str) -> bool:
    return (
        db.session.execute(
            db.select(StoreFollower.id).where(
                StoreFollower.store_id == store_id, StoreFollower.user_id == user_id
            )
        ).first()
        is not None
    )


def followed_stores(user_id: str) -> list[dict]:
    rows = db.session.execute(
        db.select(StoreFollower, Store)
        .join(Store, Store.id == StoreFollower.store_id)
        .where(StoreFollower.user_id == user_id)
        .order_by(StoreFollower.created_at.desc())
    ).all()
    return [
        {
            "follow_id": follow.id,
            "store_id": store.id,
            "name": store.name,
            "slug": store.slug,
            "followed_at": as_utc(follow.created_at).isoformat(),
            "follower_count": follower_count(store.id),
        }
        for follow, store in rows
    ]


# favorite / unfavorite


def favorite_listing(listing_id: str, actor: User) -> dict:
    get_listing(listing_id)

    db.session.add(Favorite(listing_id=listing_id, user_id=actor.id))
    try:
        commit_session()
    except AlreadyExists:
        logger.info(f"user {actor.id} already favorited listing {listing_id}")
        return {"listing_id": listing_id, "favorited": True, "created": False}

    logger.info(f"user {actor.id} favorited listing {listing_id}")
    return {"listing_id": listing_id, "favorited": True, "created": True}


def unfavorite_listing(listing_id: str, actor: User) -> dict:
    get_listing(listing_id)
    removed = (
        db.session.query(Favorite)
        .filter(Favorite.listing_id == listing_id, Favorite.user_id == actor.id)
        .delete(synchronize_session=False)
    )
    commit_session()
    return {"listing_id": listing_id, "favorited": False, "removed": bool(removed)}


def favorite_count(listing_id: str) -> int:
    return db.session.execute(
        db.select(func.count(Favorite.id)).where(Favorite.listing_id == listing_id)
    ).scalar_one()


def is_favorited(listing_id: str, user_id: str) -> bool:
    return (
        db.session.execute(
            db.select(Favorite.id).where(
                Favorite.listing_id == listing_id, Favorite.user_id == user_id
            )
        ).first()
        is not None
    )


def favorited_listings(user_id: str) -> list[dict]:
    """
    Lists the listings a user favorited, newest favorite first

    Favorites whose listing has since been removed are left out.
    """
    rows = db.session.execute(
        db.select(Favorite, Listing)
        .join(Listing, Listing.id == Favorite.listing_id)
        .where(Favorite.user_id == user_id)
        .order_by(Favorite.created_at.desc())
    ).all()
    return [
        {
            "favorite_id": favorite.id,
            "listing_id": listing.id,
            "store_id": listing.store_id,
            "title": listing.title,
            "price": str(listing.price),
            "currency": listing.currency,
            "favorited_at": as_utc(favorite.created_at).isoformat(),
        }
        for favorite, listing in rows
    ]


# messages


def _preview(body: str) -> str:
    length = current_app.config.get("MESSAGE_PREVIEW_LENGTH", 100)
    if len(body) <= length:
        return body
    return body[: length - 3].rstrip() + "..."


def send_message(conversation_id: str, actor: User, body: str):
    """
    Appends a message and notifies the other participant

    Returns:
        the new message
    """
    message = messages.append(conversation_id, actor.id, body)
    _notify_new_message(conversation_id, actor, message)
    return message


def _notify_new_message(conversation_id: str, actor: User, message):
    conversation = conversations.get_for_participant(conversation_id, actor.id)
    dispatch(
        actor.id,
        conversation.other_participant(actor.id),
        NotificationType.NEW_MESSAGE,
        f"New message from {display_name(actor)}",
        body=_preview(message.body),
        link=f"/messages/{conversation_id}",
        related_id=conversation_id,
    )


def message_listing(listing_id: str, actor: User, body: str):
    """
    Sends a buyer's message about a listing, opening the conversation on first contact

    A new conversation is only flushed, so it commits together with its first
    message or not at all.

    Returns:
        tuple of (conversation, message)
    """
    if not isinstance(body, str) or not body.strip():
        raise EmptyBody("message body must not be empty")

    conversation = conversations.start_conversation(listing_id, actor.id, commit=False)
    try:
        message = messages.append(conversation.id, actor.id, body)
    except MessagingError:
        db.session.rollback()
        raise

    _notify_new_message(conversation.id, actor, message)
    return conversation, message


# listings


def publish_listing(store_id: str, actor: User, title: str, price, currency: str = "USD"):
    """
    Creates a listing in the actor's store and tells the store's followers

    Returns:
        tuple of (listing, number of followers notified)
    """
    store = _get_store(store_id)
    if store.owner_id != actor.id:
        raise PermissionDenied("only the store owner can publish listings")

    listing = Listing(
        store_id=store.id,
        seller_id=actor.id,
        title=title.strip(),
        price=to_cents(price),
        currency=currency,
    )
    db.session.add(listing)
    commit_session()
    logger.info(f"listing {listing.id} published in store {store_id}")

    follower_ids = db.session.execute(
        db.select(StoreFollower.user_id).where(StoreFollower.store_id == store_id)
    ).scalars().all()
    notified = fan_out(
        actor.id,
        follower_ids,
        NotificationType.NEW_LISTING,
        f"{store.name} listed a new item",
        body=listing.title,
        link=f"/listing/{listing.id}",
        related_id=listing.id,
    )
    return listing, notified


def update_listing_price(listing_id: str, actor: User, new_price):
    """
    Changes a listing's price; a decrease notifies everyone who favorited it

    Returns:
        tuple of (listing, number of users notified)
    """
    listing = get_listing(listing_id)
    if listing.seller_id != actor.id:
        raise PermissionDenied("only the seller can change the price")

    new_price = to_cents(new_price)
    old_price = listing.price
    if new_price == old_price:
        return listing, 0

    listing.price = new_price
    listing.updated_at = utc_now()
    commit_session()
    logger.info(f"listing {listing_id} price changed from {old_price} to {new_price}")

    if new_price >= old_price:
        return listing, 0

    favorited_by = db.session.execute(
        db.select(Favorite.user_id).where(Favorite.listing_id == listing_id)
    ).scalars().all()
    notified = fan_out(
        actor.id,
        favorited_by,
        NotificationType.PRICE_DROP,
        f"Price drop on {listing.title}",
        body=f"Now {listing.currency} {new_price:.2f} (was {old_price:.2f})",
        link=f"/listing/{listing.id}",
        related_id=listing.id,
    )
    return listing, notified


# reviews


def post_review(store_id: str, actor: User, rating: int, comment: str = None):
    store = _get_store(store_id)
    owner_id = store.owner_id
    link = _store_link(store)

    review = Review(store_id=store_id, reviewer_id=actor.id, rating=rating, comment=comment)
    db.session.add(review)
    commit_session()
    logger.info(f"review {review.id} posted for store {store_id}")

    dispatch(
        actor.id,
        owner_id,
        NotificationType.NEW_REVIEW,
        f"{display_name(actor, 'Someone')} left a {rating}-star review",
        body=comment,
        link=link,
        related_id=review.id,
    )
    return review
