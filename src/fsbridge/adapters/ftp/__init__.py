"""
FTP backend.

Usage:
    from fsbridge.adapters.ftp import FtpAdapter, FtpConfig

    adapter = FtpAdapter(FtpConfig(host="ftp.example.com", username="me", password="secret"))
    adapter.put("hello.txt", b"hello")
"""

from fsbridge.adapters.ftp.adapter import FtpAdapter
from fsbridge.adapters.ftp.connection import (
    ConnectionState,
    FtpConfig,
    FtpConnectionManager,
    TransferMode,
    default_session_factory,
)
from fsbridge.adapters.ftp.listing import (
    SYSTEM_UNIX,
    SYSTEM_WINDOWS,
    normalize_entry,
    normalize_listing,
)

__all__ = [
    'FtpAdapter',
    'FtpConfig',
    'FtpConnectionManager',
    'ConnectionState',
    'TransferMode',
    'default_session_factory',
    'SYSTEM_UNIX',
    'SYSTEM_WINDOWS',
    'normalize_entry',
    'normalize_listing',
]
