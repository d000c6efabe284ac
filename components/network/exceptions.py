"""
Relay error taxonomy.

Configuration errors and listening-socket errors are fatal to the process.
Connect and copy errors are local to one session.
"""


class RelayError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{type(self).__name__}: {self.message}"


class InvalidAddress(RelayError):
    """Malformed listen or target address."""


class MissingHost(InvalidAddress):
    """Target address without a host segment."""


class BindFailure(RelayError):
    """The listening socket could not be acquired."""


class ListenerFailure(RelayError):
    """The accept mechanism itself became unusable."""


class ConnectFailure(RelayError):
    def __init__(self, message: str, session_id: int | None = None):
        super().__init__(message)
        self.session_id = session_id


class CopyError(RelayError):
    def __init__(self, message: str, session_id: int | None = None, direction=None):
        super().__init__(message)
        self.session_id = session_id
        self.direction = direction
