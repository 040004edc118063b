"""
Base contract and value types for storage adapters.

Defines the interface every adapter implements and the metadata model shared
by all backends.
"""

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Dict, Iterator, Mapping, Optional, Union

from fsbridge.exceptions import AlreadyExistsError, NotFoundError

Contents = Union[bytes, str]

# Group/other read bits
PUBLIC_BITS = 0o044


class EntryType(str, Enum):
    """Type of storage entry."""
    FILE = "file"
    DIRECTORY = "dir"
    SYMLINK = "link"


class Visibility(str, Enum):
    """Public/private classification of an entry's access mode."""
    PUBLIC = "public"
    PRIVATE = "private"


def visibility_from_mode(mode: int) -> Visibility:
    """Classify permission bits: any group/other read bit means public."""
    return Visibility.PUBLIC if mode & PUBLIC_BITS else Visibility.PRIVATE


@dataclass(frozen=True)
class Metadata:
    """
    Metadata of a single entry.

    Attributes:
        type: EntryType.FILE or EntryType.DIRECTORY
        size: Size in bytes (None when the backend does not report it)
        timestamp: Last modification time in epoch seconds
        visibility: Public/private classification
    """
    type: EntryType
    size: Optional[int] = None
    timestamp: Optional[int] = None
    visibility: Optional[Visibility] = None

    def __post_init__(self):
        if self.size is not None and self.size < 0:
            raise ValueError(f"Size must be non-negative, got {self.size}")

    @classmethod
    def for_directory(cls) -> 'Metadata':
        """Directory metadata without size, timestamp or visibility."""
        return cls(type=EntryType.DIRECTORY)

    @property
    def is_file(self) -> bool:
        return self.type is EntryType.FILE

    @property
    def is_dir(self) -> bool:
        return self.type is EntryType.DIRECTORY


@dataclass(frozen=True)
class DirectoryEntry:
    """
    One entry produced by a listing.

    Attributes:
        path: Logical path relative to the adapter root
        type: EntryType.FILE or EntryType.DIRECTORY
        timestamp: Last modification time in epoch seconds, if known
        size: Size in bytes, files only
        visibility: Public/private classification, if the listing reports it
    """
    path: str
    type: EntryType
    timestamp: Optional[int] = None
    size: Optional[int] = None
    visibility: Optional[Visibility] = None

    @property
    def is_file(self) -> bool:
        return self.type is EntryType.FILE

    @property
    def is_dir(self) -> bool:
        return self.type is EntryType.DIRECTORY

    @property
    def name(self) -> str:
        return self.path.rpartition('/')[2]

    @property
    def parent(self) -> str:
        return self.path.rpartition('/')[0]

    def __repr__(self) -> str:
        size_str = f"{self.size:,} bytes" if self.size is not None else "-"
        return f"DirectoryEntry({self.type.value} {self.path!r}, {size_str})"


class PermissionMap:
    """
    Visibility to numeric mode table, per entry type.

    Overrides are merged onto the defaults one key at a time, so
    ``{'file': {'public': 0o640}}`` only replaces that single mode.
    """

    DEFAULTS: Dict[str, Dict[str, int]] = {
        'file': {'public': 0o644, 'private': 0o600},
        'dir': {'public': 0o755, 'private': 0o700},
    }

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, int]]] = None):
        self._table = {kind: dict(modes) for kind, modes in self.DEFAULTS.items()}

        for kind, modes in (overrides or {}).items():
            if kind not in self._table:
                raise ValueError(f"Unknown permission section: {kind}. Must be 'file' or 'dir'")
            for visibility, mode in modes.items():
                self._table[kind][Visibility(visibility).value] = int(mode)

    def mode_for(self, entry_type: EntryType, visibility: Union[Visibility, str]) -> int:
        """Numeric mode for an entry type and visibility."""
        kind = 'dir' if entry_type is EntryType.DIRECTORY else 'file'
        return self._table[kind][Visibility(visibility).value]

    def __eq__(self, other) -> bool:
        return isinstance(other, PermissionMap) and self._table == other._table

    def __repr__(self) -> str:
        formatted = {
            kind: {vis: oct(mode) for vis, mode in modes.items()}
            for kind, modes in self._table.items()
        }
        return f"PermissionMap({formatted})"


def to_bytes(contents: Contents) -> bytes:
    """Encode str contents as UTF-8, pass bytes through."""
    if isinstance(contents, str):
        return contents.encode('utf-8')
    return bytes(contents)


class StorageAdapter(ABC):
    """
    Backend-agnostic storage contract.

    Every path argument is a logical path relative to the adapter root.
    Precondition violations (missing source, existing target...) raise the
    matching fsbridge.exceptions error before anything is changed. Backend
    failures while moving data are reported as a False result.
    """

    @abstractmethod
    def has_file(self, path: str) -> bool:
        """Check whether a file exists at path."""

    @abstractmethod
    def has_dir(self, path: str) -> bool:
        """Check whether a directory exists at path."""

    @abstractmethod
    def read_stream(self, path: str) -> BinaryIO:
        """
        Open a file for reading.

        The caller owns the returned stream and must close it (it can be
        used as a context manager).

        Raises:
            NotFoundError: If path is not a file
            UnreadableError: If the file exists but cannot be opened
        """

    @abstractmethod
    def write_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        """
        Create a new file from a readable binary stream.

        Raises:
            AlreadyExistsError: If a file already exists at path
        """

    @abstractmethod
    def update_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        """
        Replace an existing file from a readable binary stream.

        Raises:
            NotFoundError: If no file exists at path
        """

    @abstractmethod
    def put_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        """Create or overwrite a file from a readable binary stream."""

    @abstractmethod
    def rename(self, path: str, new_path: str) -> bool:
        """
        Move a file.

        Raises:
            NotFoundError: If the source file is missing
            AlreadyExistsError: If the destination file exists
        """

    @abstractmethod
    def copy(self, path: str, new_path: str) -> bool:
        """
        Copy a file.

        Raises:
            NotFoundError: If the source file is missing
            AlreadyExistsError: If the destination file exists
        """

    @abstractmethod
    def delete_file(self, path: str) -> bool:
        """Delete a file."""

    @abstractmethod
    def delete_dir(self, path: str) -> bool:
        """Delete a directory and everything below it."""

    @abstractmethod
    def create_dir(self, path: str, visibility: Visibility = Visibility.PUBLIC) -> bool:
        """Create a directory, including missing parents."""

    @abstractmethod
    def list_contents(self, directory: str = '', recursive: bool = False) -> Iterator[DirectoryEntry]:
        """
        List a directory.

        Each call recomputes the listing from the backend.

        Args:
            directory: Directory to list ('' for the root)
            recursive: Whether to descend into subdirectories

        Returns:
            Iterator of DirectoryEntry
        """

    @abstractmethod
    def get_metadata(self, path: str) -> Metadata:
        """
        Get metadata of a file or directory.

        Raises:
            NotFoundError: If nothing exists at path
        """

    @abstractmethod
    def set_visibility(self, path: str, visibility: Visibility) -> bool:
        """
        Apply the permission mode mapped to visibility.

        Raises:
            NotFoundError: If nothing exists at path
        """

    def has(self, path: str) -> bool:
        """Check whether a file or directory exists at path."""
        return self.has_file(path) or self.has_dir(path)

    def read(self, path: str) -> bytes:
        """
        Read a whole file.

        Raises:
            NotFoundError: If path is not a file
            UnreadableError: If the file exists but cannot be opened
        """
        with self.read_stream(path) as stream:
            return stream.read()

    def write(self, path: str, contents: Contents, visibility: Optional[Visibility] = None) -> bool:
        """
        Create a new file.

        Raises:
            AlreadyExistsError: If a file already exists at path
        """
        with io.BytesIO(to_bytes(contents)) as stream:
            return self.write_stream(path, stream, visibility)

    def update(self, path: str, contents: Contents, visibility: Optional[Visibility] = None) -> bool:
        """
        Replace an existing file.

        Raises:
            NotFoundError: If no file exists at path
        """
        with io.BytesIO(to_bytes(contents)) as stream:
            return self.update_stream(path, stream, visibility)

    def put(self, path: str, contents: Contents, visibility: Optional[Visibility] = None) -> bool:
        """Create or overwrite a file."""
        with io.BytesIO(to_bytes(contents)) as stream:
            return self.put_stream(path, stream, visibility)

    def get_size(self, path: str) -> Optional[int]:
        return self.get_metadata(path).size

    def get_timestamp(self, path: str) -> Optional[int]:
        return self.get_metadata(path).timestamp

    def get_visibility(self, path: str) -> Optional[Visibility]:
        return self.get_metadata(path).visibility

    def _assert_file_present(self, path: str) -> None:
        if not self.has_file(path):
            raise NotFoundError(path)

    def _assert_file_absent(self, path: str) -> None:
        if self.has_file(path):
            raise AlreadyExistsError(path)

    def _assert_present(self, path: str) -> None:
        if not self.has(path):
            raise NotFoundError(path)
