"""
Tests for the message ledger: appends, ordering and read state.
"""

import pytest

from models import db, Conversation, Message
from utils import conversations, messages
from utils.db_util import as_utc
from utils.errors import EmptyBody, InvalidSender, NotFound, PermissionDenied


@pytest.fixture
def conversation(listing, buyer):
    return conversations.start_conversation(listing.id, buyer.id)


def test_append_stores_trimmed_unread_message(conversation, buyer):
    message = messages.append(conversation.id, buyer.id, "  Is this available?  ")

    assert message.body == "Is this available?"
    assert message.is_read is False
    assert message.sender_id == buyer.id


def test_append_bumps_conversation_updated_at(conversation, buyer):
    message = messages.append(conversation.id, buyer.id, "hello")

    refreshed = db.session.get(Conversation, conversation.id)
    assert as_utc(refreshed.updated_at) == as_utc(message.created_at)
    assert as_utc(refreshed.updated_at) >= as_utc(refreshed.created_at)


def test_append_rejects_non_participant(conversation, stranger):
    with pytest.raises(InvalidSender):
        messages.append(conversation.id, stranger.id, "let me in")


@pytest.mark.parametrize("body", ["", "   ", "\n\t", None])
def test_append_rejects_blank_body(conversation, buyer, body):
    with pytest.raises(EmptyBody):
        messages.append(conversation.id, buyer.id, body)
    assert db.session.execute(db.select(Message)).first() is None


def test_append_unknown_conversation(buyer):
    with pytest.raises(NotFound):
        messages.append("missing", buyer.id, "hello")


def test_messages_are_strictly_ordered(conversation, buyer, seller):
    for i in range(6):
        sender = buyer if i % 2 == 0 else seller
        messages.append(conversation.id, sender.id, f"message {i}")

    ascending = messages.list_messages(conversation.id, order="asc")
    stamps = [as_utc(m.created_at) for m in ascending]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert [m.body for m in ascending] == [f"message {i}" for i in range(6)]

    descending = messages.list_messages(conversation.id)
    assert [m.id for m in descending] == [m.id for m in reversed(ascending)]


def test_list_messages_limit_and_before_cursor(conversation, buyer):
    for i in range(5):
        messages.append(conversation.id, buyer.id, f"message {i}")

    page = messages.list_messages(conversation.id, limit=2)
    assert [m.body for m in page] == ["message 4", "message 3"]

    older = messages.list_messages(conversation.id, before=as_utc(page[-1].created_at))
    assert [m.body for m in older] == ["message 2", "message 1", "message 0"]


def test_first_message_is_unread_for_seller_only(conversation, buyer, seller):
    messages.append(conversation.id, buyer.id, "Is this available?")

    assert messages.unread_count(conversation.id, seller.id) == 1
    assert messages.unread_count(conversation.id, buyer.id) == 0


def test_mark_read_is_idempotent(conversation, buyer, seller):
    messages.append(conversation.id, buyer.id, "one")
    messages.append(conversation.id, buyer.id, "two")

    assert messages.mark_read(conversation.id, seller.id) == 2
    assert messages.unread_count(conversation.id, seller.id) == 0

    assert messages.mark_read(conversation.id, seller.id) == 0
    assert messages.unread_count(conversation.id, seller.id) == 0


def test_mark_read_leaves_own_messages_alone(conversation, buyer, seller):
    messages.append(conversation.id, buyer.id, "Is this available?")
    messages.mark_read(conversation.id, seller.id)
    reply = messages.append(conversation.id, seller.id, "Yes it is")

    messages.mark_read(conversation.id, seller.id)

    assert db.session.get(Message, reply.id).is_read is False
    assert messages.unread_count(conversation.id, buyer.id) == 1
    assert messages.unread_count(conversation.id, seller.id) == 0


def test_read_flags_never_revert(conversation, buyer, seller):
    first = messages.append(conversation.id, buyer.id, "first")
    messages.mark_read(conversation.id, seller.id)

    messages.append(conversation.id, buyer.id, "second")
    messages.mark_read(conversation.id, buyer.id)

    assert db.session.get(Message, first.id).is_read is True
    assert messages.unread_count(conversation.id, seller.id) == 1


def test_mark_read_rejects_non_participant(conversation, buyer, stranger):
    messages.append(conversation.id, buyer.id, "hello")

    with pytest.raises(PermissionDenied):
        messages.mark_read(conversation.id, stranger.id)
