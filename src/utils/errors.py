"""
Error taxonomy for the messaging and notification engine.

Each error carries the HTTP status the API layer responds with.
"""


class MessagingError(Exception):
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthenticated(MessagingError):
    status_code = 401


class PermissionDenied(MessagingError):
    status_code = 403


class NotFound(MessagingError):
    status_code = 404


class InvalidSender(MessagingError):
    status_code = 400


class EmptyBody(MessagingError):
    status_code = 400


class AlreadyExists(MessagingError):
    status_code = 409


class Transient(MessagingError):
    status_code = 503
