"""
Local filesystem adapter.

Implements StorageAdapter over a directory tree on the local disk.
"""

import fcntl
import os
import shutil
import stat
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntFlag
from typing import BinaryIO, Iterator, List, Mapping, Optional, Union

from fsbridge.adapters.base import (
    DirectoryEntry,
    EntryType,
    Metadata,
    PermissionMap,
    StorageAdapter,
    Visibility,
    visibility_from_mode,
)
from fsbridge.adapters.prefixer import PathPrefixer
from fsbridge.exceptions import (
    AlreadyExistsError,
    DirectoryCreationFailedError,
    NotFoundError,
    NotSupportedError,
    PermissionDeniedError,
    UnreadableError,
)
from fsbridge.logger import get_logger

logger = get_logger(__name__)


class LinkHandling(IntFlag):
    """How listings treat symbolic links. Flags can be combined."""
    NONE = 0
    SKIP_LINKS = 0o001
    DISALLOW_LINKS = 0o002


@dataclass(frozen=True)
class LocalConfig:
    """
    Local adapter configuration.

    Attributes:
        root: Root directory, created when missing
        link_handling: Symlink policy for listings
        permissions: Overrides for the visibility to mode table
    """
    root: str
    link_handling: LinkHandling = LinkHandling.DISALLOW_LINKS
    permissions: Optional[Mapping[str, Mapping[str, int]]] = None


@contextmanager
def _cleared_umask():
    """Clear the process umask for the duration of the block."""
    previous = os.umask(0)
    try:
        yield
    finally:
        os.umask(previous)


def _entry_type(entry: os.DirEntry) -> EntryType:
    if entry.is_symlink():
        return EntryType.SYMLINK
    if entry.is_dir(follow_symlinks=False):
        return EntryType.DIRECTORY
    return EntryType.FILE


def _scan(location: str) -> List[os.DirEntry]:
    try:
        with os.scandir(location) as iterator:
            return sorted(iterator, key=lambda entry: entry.name)
    except PermissionError as e:
        raise UnreadableError(location) from e


@contextmanager
def _exclusive_writer(location: str):
    """Open a file for writing under an exclusive flock, truncating it once locked."""
    fd = os.open(location, os.O_WRONLY | os.O_CREAT, 0o666)
    with os.fdopen(fd, 'wb') as destination:
        fcntl.flock(destination, fcntl.LOCK_EX)
        destination.truncate()
        yield destination


class LocalAdapter(StorageAdapter):
    """
    Storage adapter for a local directory tree.

    Features:
    - Strict create/update semantics checked before touching the disk
    - mkdir -p with configured modes, independent of the process umask
    - Child-first recursive delete that never follows links
    - Lazy listings, pre-order when recursive
    - Visibility mapped onto permission bits

    Example:
        >>> adapter = LocalAdapter("/srv/data")
        >>> adapter.write("reports/q1.csv", b"a,b\\n")
        True
        >>> [entry.path for entry in adapter.list_contents("reports")]
        ['reports/q1.csv']
    """

    def __init__(
        self,
        root: str,
        link_handling: LinkHandling = LinkHandling.DISALLOW_LINKS,
        permissions: Optional[Union[PermissionMap, Mapping[str, Mapping[str, int]]]] = None
    ):
        """
        Initialize local adapter.

        Args:
            root: Root directory (a symlinked root is resolved)
            link_handling: Symlink policy for listings
            permissions: PermissionMap or overrides for the default table

        Raises:
            DirectoryCreationFailedError: If the root cannot be created
            UnreadableError: If the root is not readable
        """
        if isinstance(permissions, PermissionMap):
            self.permission_map = permissions
        else:
            self.permission_map = PermissionMap(permissions)
        self.link_handling = LinkHandling(link_handling)

        resolved = os.path.realpath(root) if os.path.islink(root) else os.path.abspath(root)
        self._ensure_directory(resolved)

        if not os.access(resolved, os.R_OK):
            raise UnreadableError(root)

        self.root = resolved
        self._prefixer = PathPrefixer(resolved, os.sep)

        logger.debug(
            "Initialized LocalAdapter",
            extra={'root': resolved, 'link_handling': int(self.link_handling)}
        )

    @classmethod
    def from_config(cls, config: LocalConfig) -> 'LocalAdapter':
        return cls(config.root, config.link_handling, config.permissions)

    @property
    def prefixer(self) -> PathPrefixer:
        return self._prefixer

    def __repr__(self) -> str:
        return f"LocalAdapter(root={self.root!r})"

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def _make_dirs(self, location: str, mode: int) -> None:
        """Create location and its missing ancestors, all with mode."""
        missing = []
        current = location
        while not os.path.isdir(current):
            missing.append(current)
            parent = os.path.dirname(current)
            if parent == current:
                break
            current = parent

        for directory in reversed(missing):
            try:
                os.mkdir(directory, mode)
            except FileExistsError:
                if not os.path.isdir(directory):
                    raise

    def _ensure_directory(self, location: str, mode: int = 0) -> None:
        """
        Make sure a directory exists.

        Args:
            location: Physical directory path
            mode: Mode for created directories (default: public directory mode)

        Raises:
            DirectoryCreationFailedError: If the directory is still missing afterwards
        """
        if os.path.isdir(location):
            return

        mode = mode or self.permission_map.mode_for(EntryType.DIRECTORY, Visibility.PUBLIC)

        with _cleared_umask():
            try:
                self._make_dirs(location, mode)
            except OSError as e:
                logger.warning(f"Failed to create directory: {e}", extra={'location': location})

        if not os.path.isdir(location):
            raise DirectoryCreationFailedError(location)

    def has_file(self, path: str) -> bool:
        return os.path.isfile(self._prefixer.apply(path))

    def has_dir(self, path: str) -> bool:
        return os.path.isdir(self._prefixer.apply(path))

    def create_dir(self, path: str, visibility: Visibility = Visibility.PUBLIC) -> bool:
        """
        Create a directory and its missing parents.

        Raises:
            AlreadyExistsError: If anything already exists at path
        """
        location = self._prefixer.apply(path)

        if os.path.lexists(location):
            raise AlreadyExistsError(path)

        mode = self.permission_map.mode_for(EntryType.DIRECTORY, visibility)
        logger.debug(f"Creating directory with mode {mode:o}", extra={'path': path})

        with _cleared_umask():
            try:
                self._make_dirs(location, mode)
            except OSError as e:
                logger.warning(f"Failed to create directory: {e}", extra={'path': path})
                return False

        return True

    def delete_dir(self, path: str) -> bool:
        """
        Delete a directory, removing its contents child-first.

        Raises:
            UnreadableError: If an entry of the tree cannot be read
        """
        location = self._prefixer.apply(path)

        if not os.path.isdir(location) or os.path.islink(location):
            return False

        with logger.timer(f"delete_dir({path})"):
            for entry in self._iter_tree(location, child_first=True):
                entry_type = _entry_type(entry)
                if entry_type is not EntryType.SYMLINK:
                    self._guard_readable(entry)

                try:
                    self._delete_entry(entry, entry_type)
                except OSError as e:
                    logger.warning(
                        f"Failed to delete {entry_type.value}: {e}",
                        extra={'location': entry.path}
                    )
                    return False

            try:
                os.rmdir(location)
            except OSError as e:
                logger.warning(f"Failed to delete directory: {e}", extra={'path': path})
                return False

        return True

    def _guard_readable(self, entry: os.DirEntry) -> None:
        if not os.access(entry.path, os.R_OK):
            raise UnreadableError(entry.path)

    def _delete_entry(self, entry: os.DirEntry, entry_type: EntryType) -> None:
        if entry_type is EntryType.DIRECTORY:
            os.rmdir(entry.path)
        else:
            os.unlink(entry.path)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _iter_tree(self, location: str, child_first: bool = False) -> Iterator[os.DirEntry]:
        """
        Walk a directory tree with an explicit stack.

        Entries come parent-first by default, or child-first when
        child_first is set. Links to directories are never descended.
        """
        stack = [(entry, False) for entry in reversed(_scan(location))]

        while stack:
            entry, expanded = stack.pop()

            if expanded or _entry_type(entry) is not EntryType.DIRECTORY:
                yield entry
                continue

            if child_first:
                stack.append((entry, True))
            else:
                yield entry

            stack.extend((child, False) for child in reversed(_scan(entry.path)))

    def list_contents(self, directory: str = '', recursive: bool = False) -> Iterator[DirectoryEntry]:
        """
        List a directory.

        Raises:
            NotFoundError: If the directory does not exist
            NotSupportedError: While iterating, on a link under DISALLOW_LINKS
            UnreadableError: While iterating, on a directory that cannot be scanned
        """
        location = self._prefixer.apply(directory)

        if not os.path.isdir(location):
            raise NotFoundError(directory)

        logger.trace(f"Listing directory (recursive={recursive})", extra={'path': directory})
        return self._generate_listing(location, recursive)

    def _generate_listing(self, location: str, recursive: bool) -> Iterator[DirectoryEntry]:
        entries = self._iter_tree(location) if recursive else iter(_scan(location))

        for entry in entries:
            normalized = self._normalize_entry(entry)
            if normalized is not None:
                yield normalized

    def _normalize_entry(self, entry: os.DirEntry) -> Optional[DirectoryEntry]:
        entry_type = _entry_type(entry)

        if entry_type is EntryType.SYMLINK:
            if self.link_handling & LinkHandling.DISALLOW_LINKS:
                raise NotSupportedError.for_link(entry.path)
            return None

        info = entry.stat(follow_symlinks=False)
        path = self._logical_path(entry.path)
        timestamp = int(info.st_mtime)

        if entry_type is EntryType.DIRECTORY:
            return DirectoryEntry(path=path, type=EntryType.DIRECTORY, timestamp=timestamp)

        return DirectoryEntry(
            path=path,
            type=EntryType.FILE,
            timestamp=timestamp,
            size=info.st_size
        )

    def _logical_path(self, location: str) -> str:
        return self._prefixer.strip(location).replace('\\', '/').strip('/')

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def read_stream(self, path: str) -> BinaryIO:
        location = self._prefixer.apply(path)

        try:
            return open(location, 'rb')
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFoundError(path) from None
        except OSError as e:
            self._assert_file_present(path)
            raise UnreadableError(path) from e

    def write_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        self._assert_file_absent(path)
        return self._write_stream_contents(path, stream, visibility)

    def update_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        self._assert_file_present(path)
        return self._write_stream_contents(path, stream, visibility)

    def put_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        return self._write_stream_contents(path, stream, visibility)

    def _write_stream_contents(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility]
    ) -> bool:
        location = self._prefixer.apply(path)
        self._ensure_directory(os.path.dirname(location))

        try:
            with _exclusive_writer(location) as destination:
                shutil.copyfileobj(stream, destination)
        except OSError as e:
            logger.warning(f"Failed to write file: {e}", extra={'path': path})
            return False

        logger.debug("Wrote file", extra={'path': path})

        if visibility:
            return self.set_visibility(path, visibility)

        return True

    def rename(self, path: str, new_path: str) -> bool:
        location, destination = self._prepare_transfer(path, new_path)

        try:
            os.rename(location, destination)
        except OSError as e:
            logger.warning(f"Failed to rename {path} to {new_path}: {e}")
            return False

        return True

    def copy(self, path: str, new_path: str) -> bool:
        location, destination = self._prepare_transfer(path, new_path)

        try:
            shutil.copyfile(location, destination)
        except OSError as e:
            logger.warning(f"Failed to copy {path} to {new_path}: {e}")
            return False

        return True

    def _prepare_transfer(self, path: str, new_path: str):
        """Check source/destination and ensure the destination's parent exists."""
        location = self._prefixer.apply(path)
        destination = self._prefixer.apply(new_path)

        self._assert_file_present(path)
        self._assert_file_absent(new_path)

        # New parents inherit the mode of the source's parent
        mode = stat.S_IMODE(os.stat(os.path.dirname(location)).st_mode)
        self._ensure_directory(os.path.dirname(destination), mode)

        return location, destination

    def delete_file(self, path: str) -> bool:
        location = self._prefixer.apply(path)

        try:
            os.unlink(location)
        except OSError as e:
            logger.warning(f"Failed to delete file: {e}", extra={'path': path})
            return False

        return True

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, path: str) -> Metadata:
        location = self._prefixer.apply(path)

        try:
            info = os.stat(location)
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(path) from None

        visibility = visibility_from_mode(info.st_mode)
        timestamp = int(info.st_mtime)

        if stat.S_ISDIR(info.st_mode):
            return Metadata(type=EntryType.DIRECTORY, timestamp=timestamp, visibility=visibility)

        return Metadata(
            type=EntryType.FILE,
            size=info.st_size,
            timestamp=timestamp,
            visibility=visibility
        )

    def set_visibility(self, path: str, visibility: Visibility) -> bool:
        """
        Apply the mode mapped to visibility.

        Raises:
            NotFoundError: If nothing exists at path
            PermissionDeniedError: If the OS refuses the change
        """
        location = self._prefixer.apply(path)
        self._assert_present(path)

        entry_type = EntryType.DIRECTORY if os.path.isdir(location) else EntryType.FILE
        mode = self.permission_map.mode_for(entry_type, visibility)

        try:
            os.chmod(location, mode)
        except PermissionError:
            raise PermissionDeniedError(path) from None
        except OSError as e:
            logger.warning(f"Failed to set visibility: {e}", extra={'path': path})
            return False

        logger.trace(f"Set mode {mode:o}", extra={'path': path})
        return True
