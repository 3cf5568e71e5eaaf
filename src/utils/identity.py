from models import db, User


def display_name(user: User, fallback: str = "User") -> str:
    """
    Resolves the name shown for a user: display name, then email local part, then fallback
    """
    if user is None:
        return fallback
    if user.display_name and user.display_name.strip():
        return user.display_name.strip()
    if user.email and user.email.split("@")[0]:
        return user.email.split("@")[0]
    return fallback


def resolve_identities(user_ids, fallback: str = "User") -> dict:
    """
    Maps user ids to display identities with a single query

    Args:
        user_ids: iterable of user ids
        fallback: name used for users without a display name or email

    Returns:
        dict of user id -> {"id", "email", "display_name"}; unknown ids resolve to the fallback
    """
    ids = set(user_ids)
    if not ids:
        return {}

    users = db.session.execute(db.select(User).where(User.id.in_(ids))).scalars().all()
    found = {u.id: u for u in users}

    identities = {}
    for user_id in ids:
        user = found.get(user_id)
        identities[user_id] = {
            "id": user_id,
            "email": user.email if user else None,
            "display_name": display_name(user, fallback),
        }
    return identities
