from . import db
from datetime import datetime, timezone
import enum
import uuid


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class Conversation(db.Model):
    __tablename__ = "conversations"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = db.Column(
        db.String(36), db.ForeignKey("listings.id"), nullable=False, index=True
    )
    buyer_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    status = db.Column(
        db.String(10), nullable=False, default=ConversationStatus.ACTIVE.value
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    listing = db.relationship("Listing", backref="conversations")
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    messages = db.relationship(
        "Message",
        back_populates="conversation",
        lazy=True,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("listing_id", "buyer_id", name="uq_conversation_listing_buyer"),
        db.CheckConstraint("buyer_id <> seller_id", name="ck_conversation_distinct_parties"),
    )

    def participants(self) -> tuple[str, str]:
        return self.buyer_id, self.seller_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants()

    def other_participant(self, user_id: str) -> str:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id
