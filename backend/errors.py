"""Errors raised by the session lifecycle and the entry points built on it."""


class SneuzError(Exception):
    """Base class; ``message`` is safe to show to the user."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class Unauthenticated(SneuzError):
    def __init__(self, message: str = "Not signed in."):
        super().__init__(message)


class PersistenceError(SneuzError):
    """The remote store rejected the call or could not be reached."""


class ValidationError(SneuzError):
    pass


class SessionNotFound(SneuzError):
    def __init__(self, session_id: str):
        super().__init__(f"Sleep session {session_id} not found")
        self.session_id = session_id


class AlreadyTracking(SneuzError):
    def __init__(self):
        super().__init__("You are already sleeping.")


class NotTracking(SneuzError):
    def __init__(self):
        super().__init__("You are not currently sleeping.")
