"""Domain exceptions."""


class DialerError(Exception):
    """Base class for engine errors."""


class CallJobError(DialerError):
    """A call job cannot be executed (missing prospect, user, phone or minutes)."""


class CallProviderError(DialerError):
    """The calling provider rejected or failed a call request."""
