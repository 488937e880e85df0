class MessagingError(Exception):
    """Base class for every failure raised by the message queue client."""

    kind = "messaging"
    retryable = False


class BrokerConnectionError(MessagingError, ConnectionError):
    """The broker connection cannot be established or is already closed."""

    kind = "connection"
    retryable = True


class RegistryClosedError(BrokerConnectionError):
    """The producer registry was torn down and accepts no new destinations."""

    kind = "registry-closed"


class SerializationError(MessagingError):
    """A Message cannot be turned into an envelope, or a body cannot be parsed back."""

    kind = "serialization"


class TransportError(MessagingError):
    """A send, acknowledge or receive call failed on the broker side."""

    kind = "transport"
    retryable = True


class HandlerError(MessagingError):
    """The caller-supplied consumer handler failed for a single message."""

    kind = "handler"
