from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .user import User
from .store import Store
from .listing import Listing
from .conversation import Conversation, ConversationStatus
from .message import Message
from .notification_type import NotificationType
from .notification import Notification
from .store_follower import StoreFollower
from .favorite import Favorite
from .review import Review
