"""
Logical path normalization and root prefixing.

Adapters address entries with logical paths (forward slashes, relative to the
adapter root). PathPrefixer maps them onto physical locations and back.
"""

from typing import List


def normalize_path(path: str) -> str:
    """
    Normalize a logical path.

    Backslashes become slashes, empty and '.' segments are dropped and '..'
    removes the previous segment. The root is the empty string.

    Args:
        path: Path to normalize

    Returns:
        Normalized path without leading or trailing slashes

    Raises:
        ValueError: If the path climbs above the root

    Example:
        >>> normalize_path('/reports\\\\2024/./q1/../q2.csv')
        'reports/2024/q2.csv'
    """
    parts: List[str] = []

    for segment in path.replace('\\', '/').split('/'):
        if segment in ('', '.'):
            continue
        if segment == '..':
            if not parts:
                raise ValueError(f"Path is outside of the defined root, path: [{path}]")
            parts.pop()
            continue
        parts.append(segment)

    return '/'.join(parts)


def dirname(path: str) -> str:
    """Parent of a normalized logical path ('' for top-level entries)."""
    return path.rpartition('/')[0]


class PathPrefixer:
    """
    Immutable root prefix for an adapter.

    An empty root disables prefixing. A non-empty root always yields a prefix
    ending in exactly one separator.

    Example:
        >>> prefixer = PathPrefixer('/srv/data/')
        >>> prefixer.apply('reports/q1.csv')
        '/srv/data/reports/q1.csv'
        >>> prefixer.strip('/srv/data/reports/q1.csv')
        'reports/q1.csv'
    """

    __slots__ = ('_prefix', '_separator')

    def __init__(self, root: str = '', separator: str = '/'):
        self._separator = separator
        if root == '':
            self._prefix = ''
        else:
            self._prefix = root.rstrip('\\/') + separator

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def separator(self) -> str:
        return self._separator

    def apply(self, path: str) -> str:
        """Map a logical path onto its physical location."""
        path = normalize_path(path)
        if self._separator != '/':
            path = path.replace('/', self._separator)
        return self._prefix + path

    def strip(self, location: str) -> str:
        """
        Map a physical location back onto its logical path.

        Raises:
            ValueError: If the location lies outside the prefix
        """
        if not location.startswith(self._prefix):
            raise ValueError(
                f"Location '{location}' does not start with prefix '{self._prefix}'"
            )
        path = location[len(self._prefix):]
        if self._separator != '/':
            path = path.replace(self._separator, '/')
        return path

    def __repr__(self) -> str:
        return f"PathPrefixer(prefix={self._prefix!r})"
