class NotificationError(Exception):
    """Base class for notification pipeline errors."""


class UnknownKindError(NotificationError, LookupError):
    """Raised when the rule catalog has no entry for a kind.

    Fatal to the single notification only; triggers log it and move on.
    """

    def __init__(self, kind) -> None:
        self.kind = kind
        super().__init__(f"Unknown notification kind: {kind!r}")


class PersistenceError(NotificationError):
    """Raised when the notification store fails or times out.

    Fatal to one dispatch call; scans log it and continue with the next subject.
    """

    def __init__(self, message: str, retry_after_seconds: int = 30) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class ChannelDeliveryWarning(NotificationError):
    """Raised by a delivery channel that failed to deliver.

    Never affects the persisted notification.
    """

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} delivery failed: {reason}")

