"""
Utils Module
Logging setup and the shared exception taxonomy
"""
from .logger import setup_logger, get_logger, configure_app_logging
from .exceptions import (
    FactoryError,
    ConfigurationError,
    RemoteError,
    TransientRemoteError,
    MalformedResponseError,
    DownloadError,
    CredentialError,
    NoCredentialError,
    TokenRefreshError,
    PublishError,
    MissingFieldsError,
    PublishStepError,
    StorageError,
    NotFoundError,
    DuplicateRecordError,
    StaleEntityError,
    InvalidTransitionError,
    CollaboratorError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_app_logging",
    "FactoryError",
    "ConfigurationError",
    "RemoteError",
    "TransientRemoteError",
    "MalformedResponseError",
    "DownloadError",
    "CredentialError",
    "NoCredentialError",
    "TokenRefreshError",
    "PublishError",
    "MissingFieldsError",
    "PublishStepError",
    "StorageError",
    "NotFoundError",
    "DuplicateRecordError",
    "StaleEntityError",
    "InvalidTransitionError",
    "CollaboratorError",
]
