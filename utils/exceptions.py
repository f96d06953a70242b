"""
Custom Exceptions
Error taxonomy shared by the remote client, publisher, reconciler and orchestrator
"""
from typing import Optional


class FactoryError(Exception):
    """Base exception for the listing factory"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(FactoryError):
    """Missing or invalid configuration"""
    pass


class RemoteError(FactoryError):
    """Marketplace call failed; ``status`` is the last observed HTTP status (None on transport failure)"""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.status = status


class TransientRemoteError(RemoteError):
    """429 / 5xx response, eligible for retry"""
    pass


class MalformedResponseError(RemoteError):
    """2xx response whose body is not valid JSON"""
    pass


class DownloadError(FactoryError):
    """Asset download failed or timed out"""

    def __init__(self, message: str, url: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.url = url


class CredentialError(FactoryError):
    """Credential fault, never retried"""
    pass


class NoCredentialError(CredentialError):
    """No usable access token could be resolved"""
    pass


class TokenRefreshError(NoCredentialError):
    """Refresh grant rejected by the token endpoint"""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.status = status


class PublishError(FactoryError):
    """Publishing a product failed"""
    pass


class MissingFieldsError(PublishError):
    """Product lacks fields required for a listing"""

    def __init__(self, message: str, fields: list = None, **kwargs):
        super().__init__(message, kwargs)
        self.fields = list(fields or [])


class PublishStepError(PublishError):
    """Failure tagged with the publish step that caused it"""

    def __init__(self, message: str, step: int = 0, step_name: str = "", **kwargs):
        super().__init__(message, kwargs)
        self.step = step
        self.step_name = step_name


class StorageError(FactoryError):
    """Persistence error"""
    pass


class NotFoundError(StorageError):
    """Record does not exist"""
    pass


class DuplicateRecordError(StorageError):
    """Unique key already present"""
    pass


class StaleEntityError(StorageError):
    """Expected-status precondition failed on update"""

    def __init__(self, message: str, expected=None, actual=None, **kwargs):
        super().__init__(message, kwargs)
        self.expected = expected
        self.actual = actual


class InvalidTransitionError(FactoryError):
    """Product status change not allowed by the state machine"""
    pass


class CollaboratorError(FactoryError):
    """Opaque collaborator (researcher, generator, quality gate, ...) failed"""

    def __init__(self, message: str, collaborator: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.collaborator = collaborator
