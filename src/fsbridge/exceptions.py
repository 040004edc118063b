"""
Error kinds raised by fsbridge adapters.

All of them derive from FilesystemError so callers can catch the whole family
at once, or a single kind when they care about it.
"""

from typing import Optional


class FilesystemError(Exception):
    """Base exception for storage adapter errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NotFoundError(FilesystemError):
    """Raised when a path does not resolve to the expected entry."""

    def __init__(self, path: str):
        super().__init__(f"File not found at path: {path}", path)


class AlreadyExistsError(FilesystemError):
    """Raised when a create-only operation finds an existing entry."""

    def __init__(self, path: str):
        super().__init__(f"File already exists at path: {path}", path)


class UnreadableError(FilesystemError):
    """Raised when an entry exists but cannot be read."""

    def __init__(self, path: str):
        super().__init__(f"Unreadable file encountered: {path}", path)


class PermissionDeniedError(FilesystemError):
    """Raised when the backend refuses a permission change."""

    def __init__(self, path: str):
        super().__init__(f"Permission denied for path: {path}", path)


class NotSupportedError(FilesystemError):
    """Raised for entries or formats the adapter refuses to handle."""

    @classmethod
    def for_link(cls, location: str) -> 'NotSupportedError':
        return cls(f"Links are not supported, encountered link at {location}", location)

    @classmethod
    def for_system_type(cls, system_type: str) -> 'NotSupportedError':
        return cls(
            f"The FTP system type '{system_type}' is currently not supported."
        )


class DirectoryCreationFailedError(FilesystemError):
    """Raised when a directory is still missing after trying to create it."""

    def __init__(self, path: str):
        super().__init__(f"Failed to create directory: {path}", path)


class ConnectionFailedError(FilesystemError):
    """
    Raised when an FTP session cannot be established or configured.

    Attributes:
        host: Server host name
        port: Server port
        username: Login name, when the failure relates to authentication
    """

    def __init__(
        self,
        message: str,
        host: str,
        port: int,
        username: Optional[str] = None
    ):
        details = f"{host}::{port}"
        if username is not None:
            details += f", username: {username}"
        super().__init__(f"{message}: {details}")
        self.host = host
        self.port = port
        self.username = username
