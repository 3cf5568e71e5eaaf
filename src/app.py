from flask import Blueprint, Flask, current_app, request, jsonify, abort
from werkzeug.exceptions import HTTPException
from waitress import serve
from decimal import Decimal
import os
import logging

from config import Config
from utils import conversations, messages, notifications, triggers, unread
from utils.auth import require_user
from utils.db_util import create_sample_data
from utils.errors import MessagingError
from utils.identity import resolve_identities
from utils.util import validate_payload, parse_amount, parse_timestamp
from models import db

logger = logging.getLogger("marketplace_messaging")

api = Blueprint("api", __name__)

MESSAGE_PAYLOAD_FIELDS = [
    {"field": "body", "type": str, "required": True},
]

LISTING_PAYLOAD_FIELDS = [
    {"field": "title", "type": str, "required": True},
    {"field": "price", "type": Decimal, "required": True},
    {"field": "currency", "type": str, "required": False},
]

PRICE_PAYLOAD_FIELDS = [
    {"field": "price", "type": Decimal, "required": True},
]

REVIEW_PAYLOAD_FIELDS = [
    {"field": "rating", "type": int, "required": True},
    {"field": "comment", "type": str, "required": False},
]


def create_app(overrides: dict = None) -> Flask:
    """
    Builds the flask app
    Args:
        overrides: config values replacing the environment driven defaults

    Returns:
        configured flask app with tables created
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(level=app.config["LOG_LEVEL"])
    logger.setLevel(app.config["LOG_LEVEL"])

    # configure the database
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(os.path.abspath(uri[len("sqlite:///"):])), exist_ok=True)

    # initialize the database
    db.init_app(app)

    with app.app_context():
        db.create_all()
        if app.config["SEED_SAMPLE_DATA"]:
            create_sample_data()

    app.register_blueprint(api)
    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(MessagingError)
    def handle_messaging_error(e: MessagingError):
        logger.warning(f"{e.__class__.__name__}: {e.message}")
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        db.session.rollback()
        logger.exception(f"unhandled error processing {request.method} {request.path}")
        return jsonify({"error": "internal server error"}), 500


def _int_arg(name: str, default: int = None, minimum: int = 0, maximum: int = None):
    value = request.args.get(name)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        abort(400, description=f"query parameter '{name}' must be an integer")
    if parsed < minimum or (maximum is not None and parsed > maximum):
        abort(400, description=f"query parameter '{name}' is out of range")
    return parsed


def _bool_arg(name: str) -> bool:
    return request.args.get(name, "").strip().lower() in ("1", "true", "yes")


def _timestamp_arg(name: str):
    value = request.args.get(name)
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        abort(400, description=f"query parameter '{name}' must be an ISO8601 timestamp")
    return parsed


# routes
@api.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "healthy"}), 200


@api.route("/api/listings/<listing_id>/messages", methods=["POST"])
def message_listing(listing_id):
    logger.info("message_listing")
    user = require_user()

    data = request.get_json(silent=True)
    validate_payload(data, MESSAGE_PAYLOAD_FIELDS)

    conversation, message = triggers.message_listing(listing_id, user, data["body"])
    return (
        jsonify(
            {
                "conversation": conversations.conversation_to_dict(conversation),
                "message": conversations.message_to_dict(message),
            }
        ),
        201,
    )


@api.route("/api/conversations", methods=["GET"])
def list_conversations():
    logger.info("list_conversations")
    user = require_user()
    return jsonify({"conversations": conversations.list_for_user(user.id)}), 200


@api.route("/api/conversations/<conversation_id>", methods=["GET"])
def view_conversation(conversation_id):
    logger.info("view_conversation")
    user = require_user()

    order = request.args.get("order", "desc")
    if order not in ("asc", "desc"):
        abort(400, description="query parameter 'order' must be 'asc' or 'desc'")
    limit = _int_arg("limit", minimum=1)
    before = _timestamp_arg("before")

    conversation = conversations.get_for_participant(conversation_id, user.id)

    # opening a conversation reads everything the other participant sent
    marked_read = messages.mark_read(conversation.id, user.id)

    thread = messages.list_messages(conversation.id, order=order, limit=limit, before=before)
    other_id = conversation.other_participant(user.id)

    return (
        jsonify(
            {
                "conversation": conversations.conversation_to_dict(conversation),
                "listing_title": conversation.listing.title if conversation.listing else None,
                "other_user": resolve_identities([other_id])[other_id],
                "messages": [conversations.message_to_dict(m) for m in thread],
                "marked_read": marked_read,
                "unread_count": messages.unread_count(conversation.id, user.id),
            }
        ),
        200,
    )


@api.route("/api/conversations/<conversation_id>/messages", methods=["POST"])
def send_message(conversation_id):
    logger.info("send_message")
    user = require_user()

    data = request.get_json(silent=True)
    validate_payload(data, MESSAGE_PAYLOAD_FIELDS)

    message = triggers.send_message(conversation_id, user, data["body"])
    return jsonify({"message": conversations.message_to_dict(message)}), 201


@api.route("/api/conversations/<conversation_id>/read", methods=["POST"])
def mark_conversation_read(conversation_id):
    logger.info("mark_conversation_read")
    user = require_user()

    marked_read = messages.mark_read(conversation_id, user.id)
    return (
        jsonify(
            {
                "marked_read": marked_read,
                "unread_count": messages.unread_count(conversation_id, user.id),
            }
        ),
        200,
    )


@api.route("/api/conversations/<conversation_id>/close", methods=["POST"])
def close_conversation(conversation_id):
    logger.info("close_conversation")
    user = require_user()

    conversation = conversations.close(conversation_id, user.id)
    return jsonify({"conversation": conversations.conversation_to_dict(conversation)}), 200


@api.route("/api/conversations/<conversation_id>", methods=["DELETE"])
def delete_conversation(conversation_id):
    logger.info("delete_conversation")
    user = require_user()

    deleted_messages = conversations.delete(conversation_id, user.id)
    return (
        jsonify(
            {
                "status": "conversation deleted",
                "conversation_id": conversation_id,
                "deleted_messages": deleted_messages,
            }
        ),
        200,
    )


@api.route("/api/unread", methods=["GET"])
def unread_summary():
    user = require_user()
    return jsonify(unread.unread_summary(user.id)), 200


@api.route("/api/notifications", methods=["GET"])
def list_notifications():
    logger.info("list_notifications")
    user = require_user()

    page_size = current_app.config["NOTIFICATIONS_PAGE_SIZE"]
    limit = _int_arg("limit", default=page_size, minimum=1, maximum=100)
    offset = _int_arg("offset", default=0)

    rows = notifications.list_notifications(
        user.id,
        limit=limit,
        offset=offset,
        unread_only=_bool_arg("unread_only"),
        before=_timestamp_arg("before"),
    )
    return (
        jsonify(
            {
                "notifications": [n.to_dict() for n in rows],
                "has_more": len(rows) == limit,
                "unread_count": notifications.unread_count(user.id),
            }
        ),
        200,
    )


@api.route("/api/notifications/bell", methods=["GET"])
def notification_bell():
    user = require_user()

    rows = notifications.list_notifications(
        user.id, limit=current_app.config["BELL_NOTIFICATION_LIMIT"]
    )
    return (
        jsonify(
            {
                "notifications": [n.to_dict() for n in rows],
                "unread_count": notifications.unread_count(user.id),
            }
        ),
        200,
    )


@api.route("/api/notifications/unread_count", methods=["GET"])
def notification_unread_count():
    user = require_user()
    return jsonify({"unread_count": notifications.unread_count(user.id)}), 200


@api.route("/api/notifications/<notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    logger.info("mark_notification_read")
    user = require_user()

    notification = notifications.mark_read(notification_id, user.id)
    return (
        jsonify(
            {
                "notification": notification.to_dict(),
                "unread_count": notifications.unread_count(user.id),
            }
        ),
        200,
    )


@api.route("/api/notifications/read_all", methods=["POST"])
def mark_all_notifications_read():
    logger.info("mark_all_notifications_read")
    user = require_user()
    return jsonify({"unread_count": notifications.mark_all_read(user.id)}), 200


@api.route("/api/stores/<store_id>/follow", methods=["POST"])
def follow_store(store_id):
    logger.info("follow_store")
    user = require_user()
    return jsonify(triggers.follow_store(store_id, user)), 200


@api.route("/api/stores/<store_id>/follow", methods=["DELETE"])
def unfollow_store(store_id):
    logger.info("unfollow_store")
    user = require_user()
    return jsonify(triggers.unfollow_store(store_id, user)), 200


@api.route("/api/stores/<store_id>/followers", methods=["GET"])
def store_followers(store_id):
    user = require_user()
    return (
        jsonify(
            {
                "store_id": store_id,
                "follower_count": triggers.follower_count(store_id),
                "following": triggers.is_following(store_id, user.id),
            }
        ),
        200,
    )


@api.route("/api/me/following", methods=["GET"])
def followed_stores():
    user = require_user()
    return jsonify({"stores": triggers.followed_stores(user.id)}), 200


@api.route("/api/listings/<listing_id>/favorite", methods=["POST"])
def favorite_listing(listing_id):
    logger.info("favorite_listing")
    user = require_user()
    return jsonify(triggers.favorite_listing(listing_id, user)), 200


@api.route("/api/listings/<listing_id>/favorite", methods=["DELETE"])
def unfavorite_listing(listing_id):
    logger.info("unfavorite_listing")
    user = require_user()
    return jsonify(triggers.unfavorite_listing(listing_id, user)), 200


@api.route("/api/listings/<listing_id>/favorite", methods=["GET"])
def favorite_status(listing_id):
    user = require_user()
    triggers.get_listing(listing_id)
    return (
        jsonify(
            {
                "listing_id": listing_id,
                "favorited": triggers.is_favorited(listing_id, user.id),
                "favorite_count": triggers.favorite_count(listing_id),
            }
        ),
        200,
    )


@api.route("/api/me/favorites", methods=["GET"])
def favorited_listings():
    user = require_user()
    return jsonify({"listings": triggers.favorited_listings(user.id)}), 200


@api.route("/api/stores/<store_id>/listings", methods=["POST"])
def publish_listing(store_id):
    logger.info("publish_listing")
    user = require_user()

    data = request.get_json(silent=True)
    validate_payload(data, LISTING_PAYLOAD_FIELDS)
    if not data["title"].strip():
        abort(400, description="payload field 'title' must not be empty")

    listing, notified = triggers.publish_listing(
        store_id,
        user,
        data["title"],
        parse_amount(data["price"]),
        (data.get("currency") or "USD").upper(),
    )
    return (
        jsonify(
            {
                "listing_id": listing.id,
                "title": listing.title,
                "price": str(listing.price),
                "currency": listing.currency,
                "followers_notified": notified,
            }
        ),
        201,
    )


@api.route("/api/listings/<listing_id>/price", methods=["PATCH"])
def update_listing_price(listing_id):
    logger.info("update_listing_price")
    user = require_user()

    data = request.get_json(silent=True)
    validate_payload(data, PRICE_PAYLOAD_FIELDS)

    listing, notified = triggers.update_listing_price(
        listing_id, user, parse_amount(data["price"])
    )
    return (
        jsonify(
            {
                "listing_id": listing.id,
                "price": str(listing.price),
                "currency": listing.currency,
                "users_notified": notified,
            }
        ),
        200,
    )


@api.route("/api/stores/<store_id>/reviews", methods=["POST"])
def post_review(store_id):
    logger.info("post_review")
    user = require_user()

    data = request.get_json(silent=True)
    validate_payload(data, REVIEW_PAYLOAD_FIELDS)
    if not 1 <= data["rating"] <= 5:
        abort(400, description="payload field 'rating' must be between 1 and 5")

    review = triggers.post_review(store_id, user, data["rating"], data.get("comment"))
    return jsonify({"review_id": review.id, "rating": review.rating}), 201


if __name__ == "__main__":
    app = create_app({"SEED_SAMPLE_DATA": True})
    serve(app, host=app.config["HOST"], port=app.config["PORT"])
