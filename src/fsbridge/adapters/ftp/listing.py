"""
Parsing of raw FTP LIST output.

Servers answer LIST with `ls -l` style lines (unix) or DOS style lines
(windows). Recursive listings (-R) interleave `directory:` section headers.
"""

import re
from datetime import datetime
from typing import Iterable, List, Optional

from fsbridge.adapters.base import DirectoryEntry, EntryType, Visibility, visibility_from_mode
from fsbridge.adapters.prefixer import PathPrefixer
from fsbridge.exceptions import NotSupportedError

SYSTEM_UNIX = 'unix'
SYSTEM_WINDOWS = 'windows'

_WINDOWS_LINE = re.compile(r'^[0-9]{2,4}-[0-9]{2}-[0-9]{2}')
_DOT_ENTRY_OR_TOTAL = re.compile(r'.* \.(\.)?$|^total')
_SECTION_HEADER = re.compile(r'^.*:$')
_SECTION_CLEANUP = re.compile(r'^\./*|:$')
_NATURAL_CHUNK = re.compile(r'(\d+)')

_MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}


def detect_system_type(line: str) -> str:
    """Guess the listing dialect of a single line."""
    return SYSTEM_WINDOWS if _WINDOWS_LINE.match(line) else SYSTEM_UNIX


def remove_dot_directories(lines: Iterable[str]) -> List[str]:
    """Drop empty lines, `total N` lines and the `.`/`..` entries."""
    return [line for line in lines if line != '' and not _DOT_ENTRY_OR_TOTAL.match(line)]


def normalize_permissions(permissions: str) -> int:
    """
    Convert a permission column to a numeric mode.

    Example:
        >>> oct(normalize_permissions('-rw-r--r--'))
        '0o644'
        >>> oct(normalize_permissions('755'))
        '0o755'
    """
    if permissions.isdigit():
        return int(permissions, 8) & 0o777

    mode = 0
    for position, char in enumerate(permissions[1:10]):
        if char == '-':
            continue
        bit = {0: 4, 1: 2, 2: 1}[position % 3]
        mode |= bit << (3 * (2 - position // 3))
    return mode


def _join(base: str, name: str) -> str:
    return name if base == '' else f"{base}/{name}"


def _unix_timestamp(month: str, day: str, time_or_year: str) -> Optional[int]:
    """`Jan 5 12:30` (current year) or `Jan 5 2021` (midnight)."""
    try:
        month_number = _MONTHS[month[:3].lower()]
        if ':' in time_or_year:
            hour, minute = (int(part) for part in time_or_year.split(':', 1))
            year = datetime.now().year
        else:
            hour, minute = 0, 0
            year = int(time_or_year)
        return int(datetime(year, month_number, int(day), hour, minute).timestamp())
    except (KeyError, ValueError):
        return None


def _windows_timestamp(date: str, time: str) -> Optional[int]:
    """`01-31-24 03:15PM` or `2024-01-31 15:15`."""
    fmt = '%m-%d-%y%I:%M%p' if len(date) == 8 else '%Y-%m-%d%H:%M'
    try:
        return int(datetime.strptime(date + time, fmt).timestamp())
    except ValueError:
        return None


def normalize_unix_entry(line: str, base: str) -> DirectoryEntry:
    """
    Parse one `ls -l` style line.

    Raises:
        ValueError: If the line has fewer than 9 fields
    """
    parts = line.strip().split(None, 8)
    if len(parts) != 9:
        raise ValueError(f"Metadata can't be parsed from item '{line}', not enough parts.")

    permissions, _number, _owner, _group, size, month, day, time_or_year, name = parts
    path = _join(base, name)
    timestamp = _unix_timestamp(month, day, time_or_year)

    if permissions.startswith('d'):
        return DirectoryEntry(path=path, type=EntryType.DIRECTORY, timestamp=timestamp)

    return DirectoryEntry(
        path=path,
        type=EntryType.FILE,
        timestamp=timestamp,
        size=int(size),
        visibility=visibility_from_mode(normalize_permissions(permissions))
    )


def normalize_windows_entry(line: str, base: str) -> DirectoryEntry:
    """
    Parse one DOS style line (`01-31-24  03:15PM  <DIR>  name`).

    Raises:
        ValueError: If the line has fewer than 4 fields
    """
    parts = line.strip().split(None, 3)
    if len(parts) != 4:
        raise ValueError(f"Metadata can't be parsed from item '{line}', not enough parts.")

    date, time, size, name = parts
    path = _join(base, name)
    timestamp = _windows_timestamp(date, time)

    if size == '<DIR>':
        return DirectoryEntry(path=path, type=EntryType.DIRECTORY, timestamp=timestamp)

    return DirectoryEntry(
        path=path,
        type=EntryType.FILE,
        timestamp=timestamp,
        size=int(size),
        visibility=Visibility.PUBLIC
    )


def normalize_entry(line: str, base: str, system_type: Optional[str] = None) -> DirectoryEntry:
    """
    Parse one listing line in the given or detected dialect.

    Raises:
        NotSupportedError: If system_type is neither 'unix' nor 'windows'
    """
    system_type = system_type or detect_system_type(line)

    if system_type == SYSTEM_UNIX:
        return normalize_unix_entry(line, base)
    if system_type == SYSTEM_WINDOWS:
        return normalize_windows_entry(line, base)

    raise NotSupportedError.for_system_type(system_type)


def _natural_key(entry: DirectoryEntry):
    return [
        (0, int(chunk), '') if chunk.isdigit() else (1, 0, chunk)
        for chunk in _NATURAL_CHUNK.split(entry.path)
    ]


def _section_base(header: str, prefixer: Optional[PathPrefixer]) -> str:
    """Logical directory of a -R section header, absolute or relative."""
    if prefixer is not None and prefixer.prefix:
        candidate = header.rstrip('/') + '/'
        if candidate.startswith(prefixer.prefix):
            return prefixer.strip(candidate).strip('/')
    return header.strip('/')


def normalize_listing(
    lines: Iterable[str],
    base: str = '',
    system_type: Optional[str] = None,
    prefixer: Optional[PathPrefixer] = None
) -> List[DirectoryEntry]:
    """
    Turn raw LIST output into entries sorted naturally by path.

    Args:
        lines: Raw LIST lines
        base: Logical directory the listing was requested for
        system_type: 'unix', 'windows' or None to detect per line
        prefixer: Strips absolute section headers back to logical paths

    Returns:
        List of DirectoryEntry
    """
    result = []

    for line in remove_dot_directories(lines):
        if _SECTION_HEADER.match(line):
            base = _section_base(_SECTION_CLEANUP.sub('', line), prefixer)
            continue

        result.append(normalize_entry(line, base, system_type))

    return sorted(result, key=_natural_key)
