class ChatError(Exception):
    """Base class for all retrochat errors."""


class ValidationError(ChatError):
    """Input was rejected locally, before any I/O happened."""


class WriteError(ChatError):
    """The store rejected a write or did not answer in time."""


class ChannelError(ChatError):
    """A push, poll or presence transport failed.

    Channels turn this into a status transition; it never reaches callers
    of the engine.
    """


class IdentityError(ChatError):
    """The local participant could not be resolved.

    Fatal to engine start-up; the user has to sign in again.
    """
