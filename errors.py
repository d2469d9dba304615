"""Custom exceptions for the feed recovery client."""


class FeedRecoveryError(Exception):
    """Base exception for feed recovery errors."""
    pass


class MalformedFrameError(FeedRecoveryError):
    """Raised when received bytes cannot be decoded into packet frames."""
    pass


class RequestTimeoutError(FeedRecoveryError):
    """Raised when the server does not answer a request before the deadline."""
    pass


class TransportError(FeedRecoveryError):
    """Raised when a connection cannot be established or is lost."""
    pass


class ConfigurationError(FeedRecoveryError):
    """Raised when configuration is invalid."""
    pass


class PersistenceError(FeedRecoveryError):
    """Raised when recovered packets cannot be written out."""
    pass
