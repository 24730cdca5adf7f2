"""Custom exceptions for the SCPI power-supply library."""


class PsuError(Exception):
    """Base exception for all power-supply library errors."""

    pass


class PortOpenError(PsuError):
    """Raised when a serial endpoint cannot be opened.

    The message carries the underlying error text verbatim so it can be
    shown to the operator as-is.
    """

    pass


class SerialIOError(PsuError):
    """Raised when serial communication fails (port closed, write error, etc)."""

    pass


class ResponseTimeout(PsuError):
    """Raised when a query gets no reply within the response window."""

    pass


class InvalidResponse(PsuError):
    """Raised when a reply does not split into the expected fields."""

    pass
