"""
Tests for the notification dispatcher and the read-side queries.
"""

import threading
import time

import pytest
import requests
from sqlalchemy import func

from models import db, Notification, NotificationType
from utils import notifications, util
from utils.errors import NotFound, PermissionDenied

WEBHOOK_URL = "http://hooks.example.test/notify"


class FakeResponse:
    status_code = 200

    def raise_for_status(self):
        return None


def _notify_many(user, count):
    return [
        notifications.notify(user.id, NotificationType.NEW_LISTING, f"listing {i}")
        for i in range(count)
    ]


def test_notify_stores_unread_notification(buyer, seller):
    notification = notifications.notify(
        seller.id,
        NotificationType.NEW_MESSAGE,
        "New message from bea.buyer",
        body="Is this available?",
        link="/messages/abc",
        related_id="abc",
        actor_id=buyer.id,
    )

    stored = db.session.get(Notification, notification.id)
    assert stored.user_id == seller.id
    assert stored.type == NotificationType.NEW_MESSAGE
    assert stored.is_read is False
    assert stored.actor_id == buyer.id
    assert notifications.unread_count(seller.id) == 1

    data = stored.to_dict()
    assert data["type"] == "new_message"
    assert data["created_at"].endswith("+00:00")


def test_notify_accepts_type_value(seller):
    notification = notifications.notify(seller.id, "price_drop", "Price drop on Walnut table")
    assert notification.type == NotificationType.PRICE_DROP


def test_notify_rejects_unknown_type(seller):
    with pytest.raises(ValueError):
        notifications.notify(seller.id, "birthday", "Happy birthday")
    count = db.session.execute(db.select(func.count(Notification.id))).scalar_one()
    assert count == 0


def test_list_notifications_newest_first(seller):
    _notify_many(seller, 4)

    rows = notifications.list_notifications(seller.id)
    stamps = [n.to_dict()["created_at"] for n in rows]

    assert len(rows) == 4
    assert stamps == sorted(stamps, reverse=True)


def test_list_notifications_limit_and_offset(seller):
    created = _notify_many(seller, 5)

    first_page = notifications.list_notifications(seller.id, limit=3)
    second_page = notifications.list_notifications(seller.id, limit=3, offset=3)

    assert len(first_page) == 3
    assert len(second_page) == 2
    assert {n.id for n in first_page}.isdisjoint({n.id for n in second_page})
    assert {n.id for n in first_page + second_page} == {n.id for n in created}


def test_list_notifications_unread_only(seller):
    first, second = _notify_many(seller, 2)
    notifications.mark_read(first.id, seller.id)

    unread = notifications.list_notifications(seller.id, unread_only=True)

    assert [n.id for n in unread] == [second.id]


def test_list_notifications_is_per_user(seller, buyer):
    _notify_many(seller, 2)
    assert notifications.list_notifications(buyer.id) == []
    assert notifications.unread_count(buyer.id) == 0


def test_mark_read_is_monotonic(seller):
    [notification] = _notify_many(seller, 1)

    notifications.mark_read(notification.id, seller.id)
    notifications.mark_read(notification.id, seller.id)

    assert db.session.get(Notification, notification.id).is_read is True
    assert notifications.unread_count(seller.id) == 0


def test_mark_read_checks_ownership(seller, buyer):
    [notification] = _notify_many(seller, 1)

    with pytest.raises(PermissionDenied):
        notifications.mark_read(notification.id, buyer.id)
    with pytest.raises(NotFound):
        notifications.mark_read("missing", seller.id)

    assert notifications.unread_count(seller.id) == 1


def test_mark_all_read_only_touches_own_notifications(seller, buyer):
    _notify_many(seller, 3)
    _notify_many(buyer, 2)

    assert notifications.mark_all_read(seller.id) == 0
    assert notifications.unread_count(seller.id) == 0
    assert notifications.unread_count(buyer.id) == 2


def test_webhook_receives_stored_notification(app, seller, monkeypatch):
    app.config["NOTIFICATION_WEBHOOK_URL"] = WEBHOOK_URL
    posted = []
    received = threading.Event()

    def fake_post(url, json=None, headers=None, timeout=None):
        posted.append((url, json))
        received.set()
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)

    notification = notifications.notify(seller.id, NotificationType.NEW_REVIEW, "5-star review")

    assert received.wait(5)
    assert posted == [(WEBHOOK_URL, notification.to_dict())]


def test_webhook_timeouts_do_not_hold_up_notify(app, seller, monkeypatch):
    app.config["NOTIFICATION_WEBHOOK_URL"] = WEBHOOK_URL
    release = threading.Event()
    exhausted = threading.Event()
    attempts = []

    def hanging_post(url, json=None, headers=None, timeout=None):
        attempts.append(url)
        if len(attempts) == util.MAX_RETRIES:
            exhausted.set()
        release.wait(5)
        raise requests.Timeout("too slow")

    monkeypatch.setattr(requests, "post", hanging_post)
    monkeypatch.setattr(util.time, "sleep", lambda seconds: None)

    started = time.monotonic()
    notification = notifications.notify(seller.id, NotificationType.NEW_REVIEW, "5-star review")
    elapsed = time.monotonic() - started

    assert elapsed < 1
    assert db.session.get(Notification, notification.id) is not None

    release.set()
    assert exhausted.wait(5)

    future = notifications.deliver_webhook(notification)
    assert future.result(timeout=5) is False
    assert len(attempts) == 2 * util.MAX_RETRIES


def test_no_webhook_configured(seller, monkeypatch):
    def unexpected_post(*args, **kwargs):
        raise AssertionError("webhook should not be called")

    monkeypatch.setattr(requests, "post", unexpected_post)

    notification = notifications.notify(seller.id, NotificationType.NEW_FOLLOWER, "New follower")
    assert notifications.deliver_webhook(notification) is None
