"""Error taxonomy for fetching, decoding, delivering and retiring alerts."""


class MiserError(Exception):
    """Base class for all agent errors."""


class AlertDecodeError(MiserError):
    """A raw store hit could not be turned into an AlertRecord."""


class UnknownRuleKindError(AlertDecodeError):
    """A hit carried a rule kind no AlertRecord variant is registered for."""

    def __init__(self, rule_kind: str, record_id: str | None = None) -> None:
        self.rule_kind = rule_kind
        self.record_id = record_id
        super().__init__(
            f"unsupported rule kind {rule_kind!r} in record {record_id!r}"
        )


class StoreError(MiserError):
    """The alert store rejected a search or delete request."""

    def __init__(self, status: str, operation: str = "request") -> None:
        self.status = status
        self.operation = operation
        super().__init__(f"store {operation} failed: {status}")


class UnsupportedChannelError(MiserError):
    """A notifier was configured with a type that has no channel implementation."""

    def __init__(self, channel_type: str) -> None:
        self.channel_type = channel_type
        super().__init__(f"unsupported notifier of type: {channel_type}")


class DeliveryError(MiserError):
    """A channel exhausted its attempts without a successful delivery."""

    def __init__(self, name: str, endpoint: str, attempts: int = 0) -> None:
        self.name = name
        self.endpoint = endpoint
        self.attempts = attempts
        super().__init__(f"{name} webhook - url: {endpoint}")
