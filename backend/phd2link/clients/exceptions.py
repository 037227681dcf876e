"""Exceptions raised by the PHD2 client."""


class PHD2Error(Exception):
    """Base exception for PHD2 client errors."""

    pass


class PHD2ConnectionError(PHD2Error):
    """Raised when the connection cannot be opened or is lost."""

    pass


class PHD2NotConnectedError(PHD2ConnectionError):
    """Raised when an operation needs a connection and there is none."""

    pass


class PHD2CommandError(PHD2Error):
    """Raised when PHD2 answers a call with an error reply."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code


class PHD2TimeoutError(PHD2Error):
    """Raised when a call or a settle wait times out."""

    pass


class PHD2SettleError(PHD2Error):
    """Raised when settling finishes with a failure status."""

    def __init__(self, message: str, status: int = 1):
        super().__init__(message)
        self.status = status
