import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(basedir, 'db', 'marketplace_messaging.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # optional push hook, every stored notification is posted here
    NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL")
    WEBHOOK_TIMEOUT = float(os.getenv("WEBHOOK_TIMEOUT", "5"))

    BELL_NOTIFICATION_LIMIT = int(os.getenv("BELL_NOTIFICATION_LIMIT", "10"))
    NOTIFICATIONS_PAGE_SIZE = int(os.getenv("NOTIFICATIONS_PAGE_SIZE", "20"))
    MESSAGE_PREVIEW_LENGTH = int(os.getenv("MESSAGE_PREVIEW_LENGTH", "100"))

    SEED_SAMPLE_DATA = _env_flag("SEED_SAMPLE_DATA")

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8080"))
