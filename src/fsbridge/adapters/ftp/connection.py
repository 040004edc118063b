"""
FTP session lifecycle.

FtpConnectionManager owns the ftplib session of an FtpAdapter: it connects,
authenticates, configures the session and anchors it at the configured root.
"""

import ftplib
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from fsbridge.adapters.prefixer import PathPrefixer
from fsbridge.exceptions import ConnectionFailedError
from fsbridge.logger import get_logger

logger = get_logger(__name__)


class TransferMode(str, Enum):
    """FTP data transfer type."""
    BINARY = "binary"
    ASCII = "ascii"


class ConnectionState(Enum):
    """Lifecycle of an FTP session, in the order it is built up."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    PASSIVE_MODE_SET = "passive_mode_set"
    ROOT_RESOLVED = "root_resolved"
    READY = "ready"


@dataclass(frozen=True)
class FtpConfig:
    """
    FTP adapter configuration.

    Attributes:
        host: Server host name
        port: Server port
        username: Login name
        password: Login password
        use_tls: Use explicit FTPS (AUTH TLS, protected data channel)
        connect_timeout: Connect timeout in seconds
        root: Directory to anchor the session at ('' = login directory)
        perm_private: Mode applied for private visibility
        perm_public: Mode applied for public visibility
        passive: Use passive data connections
        transfer_mode: Binary or ASCII transfers
        system_type: Listing dialect hint ('unix', 'windows' or None to detect)
        ignore_passive_address: Ignore the address returned by PASV (None = ftplib default)
        manual_recursion: List directories one by one instead of LIST -R
        use_utf8: Send OPTS UTF8 ON after login
    """
    host: str
    port: int = 21
    username: str = 'anonymous'
    password: str = ''
    use_tls: bool = False
    connect_timeout: int = 90
    root: str = ''
    perm_private: int = 0o700
    perm_public: int = 0o744
    passive: bool = True
    transfer_mode: TransferMode = TransferMode.BINARY
    system_type: Optional[str] = None
    ignore_passive_address: Optional[bool] = None
    manual_recursion: bool = False
    use_utf8: bool = False


SessionFactory = Callable[[FtpConfig], ftplib.FTP]


def default_session_factory(config: FtpConfig) -> ftplib.FTP:
    """Create an unconnected ftplib session for the configuration."""
    if config.use_tls:
        return ftplib.FTP_TLS(timeout=config.connect_timeout)
    return ftplib.FTP(timeout=config.connect_timeout)


class FtpConnectionManager:
    """
    Owns one FTP session and its lifecycle.

    connect() walks DISCONNECTED -> CONNECTING -> AUTHENTICATED ->
    PASSIVE_MODE_SET -> ROOT_RESOLVED -> READY. A failure at any step raises
    ConnectionFailedError and leaves the manager DISCONNECTED.

    Example:
        >>> with FtpConnectionManager(FtpConfig(host="ftp.example.com")) as manager:
        ...     manager.session.nlst('.')
    """

    def __init__(self, config: FtpConfig, session_factory: Optional[SessionFactory] = None):
        self.config = config
        self._session_factory = session_factory or default_session_factory
        self._session: Optional[ftplib.FTP] = None
        self._state = ConnectionState.DISCONNECTED
        self._root: Optional[str] = None
        self._prefixer = PathPrefixer()
        self._is_pure_ftpd = False

    def __repr__(self) -> str:
        return (
            f"FtpConnectionManager(host={self.config.host!r}, "
            f"port={self.config.port}, state={self._state.value})"
        )

    def __enter__(self) -> 'FtpConnectionManager':
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def root(self) -> Optional[str]:
        """Absolute working directory the session is anchored at."""
        return self._root

    @property
    def prefixer(self) -> PathPrefixer:
        """Prefixer built from the resolved absolute root."""
        return self._prefixer

    @property
    def is_pure_ftpd(self) -> bool:
        return self._is_pure_ftpd

    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY

    def _fail(self, message: str, with_username: bool = False) -> ConnectionFailedError:
        username = self.config.username if with_username else None
        logger.error(
            message,
            extra={'host': self.config.host, 'port': self.config.port, 'state': self._state.value}
        )
        return ConnectionFailedError(message, self.config.host, self.config.port, username)

    def connect(self) -> None:
        """
        Establish and configure the session.

        Raises:
            ConnectionFailedError: If any step fails
        """
        if self._session is not None:
            self.disconnect()

        with logger.context(host=self.config.host, port=self.config.port):
            try:
                self._open()
                self._login()
                self._set_utf8_mode()
                self._set_passive_mode()
                self._resolve_root()
                self._is_pure_ftpd = self._detect_pure_ftpd()
            except ConnectionFailedError:
                self.disconnect()
                raise

            self._state = ConnectionState.READY
            logger.info(
                f"Connected to {self.config.host}:{self.config.port}",
                extra={'root': self._root, 'pure_ftpd': self._is_pure_ftpd}
            )

    def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        self._session = self._session_factory(self.config)

        try:
            self._session.connect(self.config.host, self.config.port, self.config.connect_timeout)
        except ftplib.all_errors as e:
            raise self._fail("Could not connect to host") from e

    def _login(self) -> None:
        try:
            self._session.login(self.config.username, self.config.password)
            if self.config.use_tls:
                self._session.prot_p()
        except ftplib.all_errors as e:
            raise self._fail("Could not login with connection", with_username=True) from e

        self._state = ConnectionState.AUTHENTICATED

    def _set_utf8_mode(self) -> None:
        if not self.config.use_utf8:
            return

        try:
            response = self._session.sendcmd('OPTS UTF8 ON')
        except ftplib.all_errors as e:
            raise self._fail("Could not set UTF-8 mode for connection") from e

        if not response.startswith('200'):
            raise self._fail("Could not set UTF-8 mode for connection")

        self._session.encoding = 'utf-8'

    def _set_passive_mode(self) -> None:
        ignore_address = self.config.ignore_passive_address
        if isinstance(ignore_address, bool) and hasattr(self._session, 'trust_server_pasv_ipv4_address'):
            self._session.trust_server_pasv_ipv4_address = not ignore_address

        try:
            self._session.set_pasv(self.config.passive)
        except ftplib.all_errors as e:
            raise self._fail("Could not set passive mode for connection") from e

        self._state = ConnectionState.PASSIVE_MODE_SET

    def _resolve_root(self) -> None:
        root = self.config.root

        try:
            if root:
                self._session.cwd(root)
            # Store the absolute path: a relative root would otherwise
            # resolve against whatever directory the session is in later.
            self._root = self._session.pwd()
        except ftplib.all_errors as e:
            raise self._fail(f"Root is invalid or does not exist: {root}") from e

        self._prefixer = PathPrefixer(self._root)
        self._state = ConnectionState.ROOT_RESOLVED

    def _detect_pure_ftpd(self) -> bool:
        try:
            response = self._session.sendcmd('HELP')
        except ftplib.Error:
            return False
        except (OSError, EOFError) as e:
            raise self._fail("Connection lost while detecting server type") from e

        return 'pure-ftpd' in response.lower()

    def disconnect(self) -> None:
        """Close the session, if any, and return to DISCONNECTED."""
        session = self._session
        self._session = None
        self._root = None
        self._prefixer = PathPrefixer()
        self._is_pure_ftpd = False
        self._state = ConnectionState.DISCONNECTED

        if session is not None:
            session.close()
            logger.debug(f"Disconnected from {self.config.host}:{self.config.port}")

    def reconnect(self) -> None:
        self.disconnect()
        self.connect()

    def is_connected(self) -> bool:
        """
        Probe the session with a listing.

        Dropped sockets and any refused reply mean "not connected"; anything
        else propagates.
        """
        if self._session is None or not self.is_ready():
            return False

        try:
            self._session.retrlines('LIST /', lambda line: None)
        except (OSError, EOFError, ftplib.error_temp, ftplib.error_perm) as e:
            logger.debug(f"Liveness check failed: {e}")
            return False

        return True

    @property
    def session(self) -> ftplib.FTP:
        """
        The ready session, (re)connecting when the liveness check fails.

        Raises:
            ConnectionFailedError: If the session cannot be (re)established
        """
        if not self.is_connected():
            self.reconnect()
        return self._session

    def restore_root(self) -> None:
        """Move the working directory back to the resolved root."""
        root = self._root
        try:
            self._session.cwd(root)
        except ftplib.all_errors as e:
            error = self._fail(f"Root is invalid or does not exist: {root}")
            self.disconnect()
            raise error from e
