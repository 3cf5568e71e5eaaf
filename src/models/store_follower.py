from . import db
from datetime import datetime, timezone
import uuid


class StoreFollower(db.Model):
    __tablename__ = "store_followers"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    store_id = db.Column(
        db.String(36), db.ForeignKey("stores.id"), nullable=False, index=True
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    store = db.relationship("Store", backref="followers")

    __table_args__ = (
        db.UniqueConstraint("store_id", "user_id", name="uq_store_follower"),
    )
