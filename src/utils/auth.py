from flask import request

from models import db, User
from utils.errors import Unauthenticated

USER_HEADER = "X-User-Id"


def get_current_user():
    """
    Resolves the user identified by the auth provider for this request

    Returns:
        User, or None when the request carries no known identity
    """
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        return None
    return db.session.get(User, user_id)


def require_user() -> User:
    user = get_current_user()
    if user is None:
        raise Unauthenticated("sign in required")
    return user
