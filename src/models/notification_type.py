import enum


class NotificationType(str, enum.Enum):
    NEW_MESSAGE = "new_message"
    NEW_FOLLOWER = "new_follower"
    NEW_LISTING = "new_listing"
    NEW_REVIEW = "new_review"
    PRICE_DROP = "price_drop"
