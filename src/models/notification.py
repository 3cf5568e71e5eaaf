from . import db
from datetime import datetime, timezone
import uuid

from models.notification_type import NotificationType


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    type = db.Column(db.Enum(NotificationType), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=True)
    link = db.Column(db.String(255), nullable=True)
    related_id = db.Column(db.String(36), nullable=True)
    actor_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    recipient = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        created_at = self.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "link": self.link,
            "related_id": self.related_id,
            "actor_id": self.actor_id,
            "is_read": self.is_read,
            "created_at": created_at.isoformat() if created_at else None,
        }
