from concurrent.futures import ThreadPoolExecutor
import logging

from flask import current_app
from sqlalchemy import func

from models import db, Notification, NotificationType
from utils.db_util import commit_session
from utils.errors import NotFound, PermissionDenied
from utils.util import api_retry_with_backoff, send_message

logger = logging.getLogger("marketplace_messaging")

_webhook_workers = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notification-webhook")


def notify(
    recipient_id: str,
    notification_type,
    title: str,
    body: str = None,
    link: str = None,
    related_id: str = None,
    actor_id: str = None,
) -> Notification:
    """
    Stores a notification for one recipient

    The dispatcher only knows the recipient; callers are responsible for not
    notifying the actor that caused the event.

    Args:
        recipient_id: id of the user receiving the notification
        notification_type: NotificationType or its string value
        title: headline shown in the bell dropdown
        body: optional detail text
        link: optional deep link
        related_id: id of the entity that caused the notification
        actor_id: id of the user whose action caused it, kept for auditing

    Returns:
        the stored notification
    """
    notification = Notification(
        user_id=recipient_id,
        type=NotificationType(notification_type),
        title=title,
        body=body,
        link=link,
        related_id=related_id,
        actor_id=actor_id,
        is_read=False,
    )
    db.session.add(notification)
    commit_session()

    logger.info(
        f"{notification.type.value} notification {notification.id} stored for user {recipient_id}"
    )
    deliver_webhook(notification)
    return notification


def deliver_webhook(notification: Notification):
    """
    Queues a stored notification for the configured webhook, if any

    Delivery runs on a background worker so the action that caused the
    notification never waits on the remote end. Failures are logged and dropped;
    the stored row stays the source of truth.

    Returns:
        Future resolving to true if the webhook accepted the notification, or
        None when no webhook is configured
    """
    url = current_app.config.get("NOTIFICATION_WEBHOOK_URL")
    if not url:
        return None

    # serialize while the session is still bound to this request
    payload = notification.to_dict()
    timeout = current_app.config.get("WEBHOOK_TIMEOUT", 5)
    return _webhook_workers.submit(_push, url, payload, timeout)


def _push(url: str, payload: dict, timeout: float) -> bool:
    delivered = api_retry_with_backoff(send_message, url, payload, timeout=timeout)
    if not delivered:
        logger.error(f"notification {payload['id']} failed to deliver to webhook {url}")
    return bool(delivered)


def list_notifications(
    user_id: str,
    limit: int = None,
    offset: int = 0,
    unread_only: bool = False,
    before=None,
) -> list[Notification]:
    """
    Lists a user's notifications, newest first

    Args:
        user_id: id of the recipient
        limit: page size, None for everything
        offset: rows to skip
        unread_only: only unread notifications
        before: only notifications created strictly before this timestamp

    Returns:
        list of notifications
    """
    query = db.select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if before is not None:
        query = query.where(Notification.created_at < before)
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return db.session.execute(query).scalars().all()


def unread_count(user_id: str) -> int:
    return db.session.execute(
        db.select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    ).scalar_one()


def mark_read(notification_id: str, user_id: str) -> Notification:
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFound(f"notification {notification_id} not found")
    if notification.user_id != user_id:
        raise PermissionDenied("notification belongs to another user")

    if not notification.is_read:
        notification.is_read = True
        commit_session()
    return notification


def mark_all_read(user_id: str) -> int:
    """
    Marks every unread notification of a user as read

    Returns:
        the user's unread count afterwards, so the caller can reset its badge
    """
    updated = (
        db.session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session="fetch")
    )
    commit_session()

    logger.info(f"{updated} notifications marked read for user {user_id}")
    return unread_count(user_id)
