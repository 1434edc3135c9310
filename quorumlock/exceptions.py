"""quorumlock exception classes."""


class QuorumLockError(Exception):
    """Base exception for all quorumlock errors."""
    pass


class ValidationError(QuorumLockError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(QuorumLockError):
    """Raised when manager settings are invalid."""
    pass


class StoreError(QuorumLockError):
    """Raised by a store adapter when a single store cannot answer."""
    pass


class StoreUnavailable(StoreError):
    """Raised when a store cannot be reached or returns garbage."""
    pass


class AuthenticationError(StoreError):
    """Raised when a store rejects our credentials."""
    pass


class LockError(QuorumLockError):
    """Raised when lock operations fail."""
    pass


class AcquireFailed(LockError):
    """Raised when quorum could not be reached within the allowed attempts."""

    def __init__(self, message: str, name: str = None, attempts: int = 0):
        super().__init__(message)
        self.name = name
        self.attempts = attempts


class AcquireTimeout(AcquireFailed):
    """Raised when the caller's deadline passes before the lock is acquired."""
    pass


class AcquireCancelled(AcquireFailed):
    """Raised when the caller cancels an acquisition in progress."""
    pass


class ClockDriftExceeded(LockError):
    """Raised when an attempt took too long for the requested validity."""

    def __init__(self, message: str, name: str = None, elapsed_ms: float = 0.0):
        super().__init__(message)
        self.name = name
        self.elapsed_ms = elapsed_ms


class ReleaseFailed(LockError):
    """Raised when a quorum of stores did not confirm the release."""

    def __init__(self, message: str, name: str = None, successes: int = 0):
        super().__init__(message)
        self.name = name
        self.successes = successes


class ExtendFailed(LockError):
    """Raised when a quorum of stores did not confirm the renewal."""

    def __init__(self, message: str, name: str = None, successes: int = 0):
        super().__init__(message)
        self.name = name
        self.successes = successes


class LockExpired(LockError):
    """Raised when a holder-only operation is attempted on an expired lease."""
    pass


class StaleFencingToken(QuorumLockError):
    """Raised when a downstream write carries an outdated fencing token."""

    def __init__(self, message: str, resource: str = None, token: int = None, last_seen: int = None):
        super().__init__(message)
        self.resource = resource
        self.token = token
        self.last_seen = last_seen
