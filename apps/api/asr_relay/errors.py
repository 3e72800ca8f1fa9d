class RelayError(Exception):
    """Base class for relay failures."""


class MissingAPIKeyError(RelayError):
    """Raised at startup when no upstream API key is configured."""


class UpstreamConnectError(RelayError):
    """Raised when the upstream WebSocket dial or handshake fails."""


class UpstreamClosedError(RelayError):
    """Raised when writing to an upstream connection that is no longer usable."""


class DownstreamClosedError(RelayError):
    """Raised when the local audio source is gone (client disconnect or EOF)."""


class EventDecodeError(RelayError):
    """Raised when an inbound control frame is not a valid event envelope."""


class TaskStartTimeout(RelayError):
    """Raised when the upstream never acknowledges run-task with task-started."""
