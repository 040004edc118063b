"""
FTP storage adapter.

Implements StorageAdapter over an ftplib session. FTP has no recursive mkdir,
no recursive delete and servers disagree on LIST output, so those parts are
rebuilt client-side.
"""

import ftplib
import re
import shutil
import tempfile
from typing import BinaryIO, Iterator, List, Optional

from fsbridge.adapters.base import (
    DirectoryEntry,
    EntryType,
    Metadata,
    StorageAdapter,
    Visibility,
)
from fsbridge.adapters.ftp.connection import (
    FtpConfig,
    FtpConnectionManager,
    SessionFactory,
    TransferMode,
)
from fsbridge.adapters.ftp.listing import normalize_entry, normalize_listing
from fsbridge.adapters.prefixer import dirname, normalize_path
from fsbridge.exceptions import DirectoryCreationFailedError, NotFoundError, UnreadableError
from fsbridge.logger import get_logger

logger = get_logger(__name__)

# Replies that fail a single command without breaking the session
_COMMAND_ERRORS = (ftplib.error_perm, ftplib.error_temp)

# Transfers above this size spill from memory to a temporary file
SPOOL_MAX_SIZE = 8 * 1024 * 1024

_NOT_FOUND_LINE = re.compile(r'.* not found')
_TOTAL_LINE = re.compile(r'^total [0-9]*$')


class FtpAdapter(StorageAdapter):
    """
    Storage adapter for an FTP server.

    All paths are sent as absolute locations under the resolved root. The
    session is opened lazily on first use, re-opened when the liveness check
    fails, and closed by disconnect(), the context manager or destruction.

    Example:
        >>> config = FtpConfig(host="ftp.example.com", username="me", password="secret", root="/data")
        >>> with FtpAdapter(config) as adapter:
        ...     adapter.put("reports/q1.csv", b"a,b\\n")
        ...     names = [entry.path for entry in adapter.list_contents("reports")]
    """

    def __init__(self, config: FtpConfig, session_factory: Optional[SessionFactory] = None):
        self.config = config
        self.connection = FtpConnectionManager(config, session_factory)

    def __repr__(self) -> str:
        return f"FtpAdapter(host={self.config.host!r}, root={self.config.root!r})"

    def __enter__(self) -> 'FtpAdapter':
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    def __del__(self):
        connection = getattr(self, 'connection', None)
        if connection is not None:
            connection.disconnect()

    def connect(self) -> None:
        self.connection.connect()

    def disconnect(self) -> None:
        self.connection.disconnect()

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    @property
    def _session(self) -> ftplib.FTP:
        return self.connection.session

    def _location(self, path: str) -> str:
        return self.connection.prefixer.apply(path)

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def has_file(self, path: str) -> bool:
        try:
            return self.get_metadata(path).is_file
        except NotFoundError:
            return False

    def has_dir(self, path: str) -> bool:
        return self._is_directory(self._session, self._location(path))

    def _is_directory(self, session: ftplib.FTP, location: str) -> bool:
        """Probe a location by entering it, then return to the root."""
        try:
            session.cwd(location)
        except _COMMAND_ERRORS:
            return False

        self.connection.restore_root()
        return True

    def create_dir(self, path: str, visibility: Visibility = Visibility.PUBLIC) -> bool:
        """
        Create a directory segment by segment, reusing existing segments.

        The working directory is back at the root afterwards, whatever the
        outcome.
        """
        session = self._session
        path = normalize_path(path)

        try:
            for directory in path.split('/') if path else []:
                if not self._create_actual_directory(session, directory):
                    return False
                session.cwd(directory)
        except _COMMAND_ERRORS as e:
            logger.warning(f"Failed to enter directory: {e}", extra={'path': path})
            return False
        finally:
            self.connection.restore_root()

        logger.debug("Created directory", extra={'path': path})

        if visibility is not Visibility.PUBLIC:
            return self.set_visibility(path, visibility)

        return True

    def _create_actual_directory(self, session: ftplib.FTP, directory: str) -> bool:
        """Create one segment inside the working directory unless it exists."""
        try:
            listing = session.nlst('.')
        except ftplib.error_perm:
            # Some servers answer 550 for an empty directory
            listing = []

        names = [item[2:] if item.startswith('./') else item for item in listing]
        if directory in names:
            return True

        try:
            session.mkd(directory)
        except _COMMAND_ERRORS as e:
            logger.warning(f"Failed to create directory segment '{directory}': {e}")
            return False

        return True

    def _ensure_directory(self, directory: str) -> None:
        if directory and not self.has_dir(directory):
            if not self.create_dir(directory):
                raise DirectoryCreationFailedError(directory)

    def delete_dir(self, path: str) -> bool:
        """Delete every file, then every directory (deepest first), then path itself."""
        session = self._session
        path = normalize_path(path)

        with logger.timer(f"delete_dir({path})"):
            contents = list(self._list_directory_contents(path, recursive=True))
            contents.reverse()

            for entry in contents:
                if entry.is_file and not self._run(session.delete, entry.path):
                    return False

            for entry in contents:
                if not entry.is_file and not self._run(session.rmd, entry.path):
                    return False

            return self._run(session.rmd, path)

    def _run(self, command, path: str) -> bool:
        """Run a single-path command, reporting a refused reply as False."""
        try:
            command(self._location(path))
        except _COMMAND_ERRORS as e:
            logger.warning(f"FTP {command.__name__} failed: {e}", extra={'path': path})
            return False
        return True

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_contents(self, directory: str = '', recursive: bool = False) -> Iterator[DirectoryEntry]:
        return self._list_directory_contents(normalize_path(directory), recursive)

    def _list_directory_contents(self, directory: str, recursive: bool) -> Iterator[DirectoryEntry]:
        # LIST on a file answers with the file itself
        if directory and not self.has_dir(directory):
            return

        if recursive and self.config.manual_recursion:
            yield from self._list_directory_contents_manually(directory)
            return

        options = '-alnR' if recursive else '-aln'
        with logger.timer(f"list_contents({directory}, recursive={recursive})"):
            entries = self._normalize(self._raw_list(options, directory), directory)
        yield from entries

    def _list_directory_contents_manually(self, directory: str) -> Iterator[DirectoryEntry]:
        """Walk the tree one LIST per directory, parents before children."""
        stack = [iter(self._normalize(self._raw_list('-aln', directory), directory))]

        while stack:
            entry = next(stack[-1], None)
            if entry is None:
                stack.pop()
                continue

            yield entry

            if entry.type is EntryType.DIRECTORY:
                stack.append(iter(self._normalize(self._raw_list('-aln', entry.path), entry.path)))

    def _normalize(self, lines: List[str], directory: str) -> List[DirectoryEntry]:
        return normalize_listing(
            lines,
            directory,
            system_type=self.config.system_type,
            prefixer=self.connection.prefixer
        )

    def _raw_list(self, options: str, path: str) -> List[str]:
        """Run LIST with options on path, escaping what servers would misread."""
        session = self._session
        location = self._location(path).rstrip('/') or '/'
        location = location.replace('*', '\\*')

        if self.connection.is_pure_ftpd:
            location = location.replace(' ', '\\ ')

        lines: List[str] = []
        try:
            session.retrlines(f"LIST {options} {location}", lines.append)
        except _COMMAND_ERRORS as e:
            logger.debug(f"LIST refused: {e}", extra={'path': path})
            return []

        logger.trace(f"LIST {options} returned {len(lines)} lines", extra={'path': path})
        return lines

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, path: str) -> Metadata:
        session = self._session
        path = normalize_path(path)

        if self._is_directory(session, self._location(path)):
            return Metadata.for_directory()

        listing = self._raw_list('-A', path)

        if not listing or 'total 0' in listing:
            raise NotFoundError(path)

        if _NOT_FOUND_LINE.match(listing[0]):
            raise NotFoundError(path)

        if _TOTAL_LINE.match(listing[0]):
            listing = listing[1:]
            if not listing:
                raise NotFoundError(path)

        entry = normalize_entry(listing[0], '', self.config.system_type)
        return Metadata(
            type=entry.type,
            size=entry.size,
            timestamp=entry.timestamp,
            visibility=entry.visibility
        )

    def set_visibility(self, path: str, visibility: Visibility) -> bool:
        self._assert_present(path)

        mode = self.config.perm_public if visibility == Visibility.PUBLIC else self.config.perm_private

        try:
            self._session.sendcmd(f"SITE CHMOD {mode:o} {self._location(path)}")
        except _COMMAND_ERRORS as e:
            logger.warning(f"Failed to set visibility: {e}", extra={'path': path})
            return False

        return True

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def read_stream(self, path: str) -> BinaryIO:
        buffer = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)

        try:
            self._download(path, buffer)
            buffer.seek(0)
        except BaseException:
            buffer.close()
            raise

        return buffer

    def _download(self, path: str, buffer: BinaryIO) -> None:
        session = self._session
        command = f"RETR {self._location(path)}"

        try:
            with logger.timer(f"download({path})"):
                if self.config.transfer_mode is TransferMode.ASCII:
                    session.retrlines(
                        command,
                        lambda line: buffer.write(line.encode(session.encoding) + b'\n')
                    )
                else:
                    session.retrbinary(command, buffer.write)
        except ftplib.error_perm as e:
            logger.debug(f"Download refused: {e}", extra={'path': path})
            raise NotFoundError(path) from e
        except ftplib.error_temp as e:
            logger.warning(f"Download failed: {e}", extra={'path': path})
            raise UnreadableError(path) from e

    def write_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        self._assert_file_absent(path)
        return self._upload(path, stream, visibility)

    def update_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        self._assert_file_present(path)
        return self._upload(path, stream, visibility)

    def put_stream(
        self,
        path: str,
        stream: BinaryIO,
        visibility: Optional[Visibility] = None
    ) -> bool:
        return self._upload(path, stream, visibility)

    def _upload(self, path: str, stream: BinaryIO, visibility: Optional[Visibility]) -> bool:
        path = normalize_path(path)
        self._ensure_directory(dirname(path))

        session = self._session
        command = f"STOR {self._location(path)}"

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as buffer:
            shutil.copyfileobj(stream, buffer)
            buffer.seek(0)

            try:
                with logger.timer(f"upload({path})"):
                    if self.config.transfer_mode is TransferMode.ASCII:
                        session.storlines(command, buffer)
                    else:
                        session.storbinary(command, buffer)
            except _COMMAND_ERRORS as e:
                logger.warning(f"Upload failed: {e}", extra={'path': path})
                return False

        if visibility:
            return self.set_visibility(path, visibility)

        return True

    def rename(self, path: str, new_path: str) -> bool:
        self._assert_file_present(path)
        self._assert_file_absent(new_path)
        self._ensure_directory(dirname(normalize_path(new_path)))

        try:
            self._session.rename(self._location(path), self._location(new_path))
        except _COMMAND_ERRORS as e:
            logger.warning(f"Failed to rename {path} to {new_path}: {e}")
            return False

        return True

    def copy(self, path: str, new_path: str) -> bool:
        self._assert_file_present(path)
        self._assert_file_absent(new_path)

        with self.read_stream(path) as stream:
            return self._upload(new_path, stream, None)

    def delete_file(self, path: str) -> bool:
        return self._run(self._session.delete, normalize_path(path))
