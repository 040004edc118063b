"""
fsbridge - One storage API over local disks and FTP servers

Adapters share a single contract for reading, writing, listing and
managing files, so code written against one backend runs on the other.
"""

__version__ = "0.1.0-dev"
__license__ = "MIT"

# Version info
VERSION = __version__
