"""
Test configuration for the marketplace messaging service.

Provides an app bound to an in-memory sqlite database, a test client and
factories for the users, stores and listings the engine reads from.
"""

from decimal import Decimal

import pytest

from app import create_app
from models import db, Listing, Store, User


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SEED_SAMPLE_DATA": False,
            "NOTIFICATION_WEBHOOK_URL": None,
        }
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(email: str, display_name: str = None) -> User:
        user = User(email=email, display_name=display_name)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_store(app):
    def _make(owner: User, name: str = "Keystone Carpentry", slug: str = None) -> Store:
        store = Store(owner_id=owner.id, name=name, slug=slug)
        db.session.add(store)
        db.session.commit()
        return store

    return _make


@pytest.fixture
def make_listing(app):
    def _make(seller: User, store: Store = None, title: str = "Walnut table", price="100.00") -> Listing:
        listing = Listing(
            store_id=store.id if store else None,
            seller_id=seller.id,
            title=title,
            price=Decimal(price),
            currency="USD",
        )
        db.session.add(listing)
        db.session.commit()
        return listing

    return _make


@pytest.fixture
def seller(make_user):
    return make_user("seller@example.com", "Sam Seller")


@pytest.fixture
def buyer(make_user):
    return make_user("bea.buyer@example.com")


@pytest.fixture
def stranger(make_user):
    return make_user("stranger@example.com", "Stan")


@pytest.fixture
def store(make_store, seller):
    return make_store(seller, slug="keystone")


@pytest.fixture
def listing(make_listing, seller, store):
    return make_listing(seller, store)


@pytest.fixture
def auth():
    def _headers(user: User) -> dict:
        return {"X-User-Id": user.id}

    return _headers
