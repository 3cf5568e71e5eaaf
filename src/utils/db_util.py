from datetime import datetime, timezone
from decimal import Decimal
import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from models import db, User, Store, Listing
from utils.errors import AlreadyExists, Transient

logger = logging.getLogger("marketplace_messaging")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Attaches UTC to naive datetimes read back from backends that drop the offset (sqlite)

    Args:
        value: datetime loaded from the database

    Returns:
        timezone aware datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def commit_session() -> None:
    """
    Commits the current session, rolling back on failure

    Raises:
        AlreadyExists: a uniqueness constraint rejected the write
        Transient: the data store is unavailable
    """
    _write(db.session.commit)


def flush_session() -> None:
    """
    Sends pending rows to the data store without committing, so constraint
    violations surface now while the commit is left to a later write
    """
    _write(db.session.flush)


def _write(action) -> None:
    try:
        action()
    except IntegrityError as e:
        db.session.rollback()
        raise AlreadyExists(f"duplicate row rejected by the data store: {e.orig}") from e
    except OperationalError as e:
        db.session.rollback()
        logger.error(f"data store unavailable: {e}")
        raise Transient("data store unavailable, please retry") from e


def create_sample_data():
    # check if sample data already exists
    existing = db.session.execute(db.select(User.id).limit(1)).first()
    if existing:
        return

    seller = User(email="info@keystonecarpentry.com", display_name="Keystone Carpentry")
    buyer = User(email="janed@gmail.com", display_name="Jane Doe")
    lurker = User(email="john.doe@example.com")
    db.session.add_all([seller, buyer, lurker])
    db.session.flush()

    store = Store(owner_id=seller.id, name="Keystone Carpentry", slug="keystone-carpentry")
    db.session.add(store)
    db.session.flush()

    db.session.add_all(
        [
            Listing(
                store_id=store.id,
                seller_id=seller.id,
                title="Walnut dining table",
                price=Decimal("850.00"),
                currency="USD",
            ),
            Listing(
                store_id=store.id,
                seller_id=seller.id,
                title="Oak bookshelf",
                price=Decimal("240.00"),
                currency="USD",
            ),
        ]
    )
    commit_session()
    logger.info("sample data created")
