class PomotrackError(Exception):
    """Base class for errors raised by the tracker."""


class ValidationError(PomotrackError):
    """Bad input (empty title, unknown category, malformed duration). Nothing was changed."""


class NoActiveSessionError(PomotrackError):
    """The timer was started without a bound work session."""

    def __init__(self, message: str = "Create or select a session before starting the timer"):
        super().__init__(message)


class PersistenceError(PomotrackError):
    """A store operation failed."""


class NotFoundError(PomotrackError):
    pass


class ReauthenticationRequiredError(PersistenceError):
    """The account operation needs a fresh sign-in."""

    code = "requires-recent-login"
