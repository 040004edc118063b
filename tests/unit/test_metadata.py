"""Unit tests for the metadata model in fsbridge.adapters.base."""

import dataclasses

import pytest

from fsbridge.adapters.base import (
    DirectoryEntry,
    EntryType,
    Metadata,
    PermissionMap,
    Visibility,
    to_bytes,
    visibility_from_mode,
)


class TestVisibility:
    """Test visibility classification of permission bits."""

    @pytest.mark.parametrize("mode, expected", [
        (0o644, Visibility.PUBLIC),
        (0o604, Visibility.PUBLIC),
        (0o640, Visibility.PUBLIC),
        (0o755, Visibility.PUBLIC),
        (0o600, Visibility.PRIVATE),
        (0o700, Visibility.PRIVATE),
        (0o711, Visibility.PRIVATE),
    ])
    def test_group_or_other_read_means_public(self, mode, expected):
        """Test the group/other read bit test."""
        assert visibility_from_mode(mode) is expected

    def test_visibility_is_str_enum(self):
        """Test that visibilities compare to their string values."""
        assert Visibility.PUBLIC == "public"
        assert Visibility("private") is Visibility.PRIVATE


class TestMetadata:
    """Test Metadata dataclass."""

    def test_file_metadata(self):
        """Test metadata with every field set."""
        metadata = Metadata(EntryType.FILE, size=10, timestamp=1700000000, visibility=Visibility.PUBLIC)
        assert metadata.is_file
        assert not metadata.is_dir
        assert metadata.size == 10

    def test_directory_metadata_has_no_details(self):
        """Test the bare directory metadata."""
        metadata = Metadata.for_directory()
        assert metadata.is_dir
        assert metadata.size is None
        assert metadata.timestamp is None
        assert metadata.visibility is None

    def test_negative_size_rejected(self):
        """Test that sizes cannot be negative."""
        with pytest.raises(ValueError, match="non-negative"):
            Metadata(EntryType.FILE, size=-1)

    def test_is_frozen(self):
        """Test that metadata values are immutable."""
        metadata = Metadata(EntryType.FILE, size=1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            metadata.size = 2


class TestDirectoryEntry:
    """Test DirectoryEntry dataclass."""

    def test_name_and_parent(self):
        """Test derived name and parent."""
        entry = DirectoryEntry("reports/2024/q1.csv", EntryType.FILE, size=1024)
        assert entry.name == "q1.csv"
        assert entry.parent == "reports/2024"
        assert entry.is_file

    def test_top_level_parent_is_root(self):
        """Test parent of a top-level entry."""
        assert DirectoryEntry("reports", EntryType.DIRECTORY).parent == ""

    def test_repr(self):
        """Test DirectoryEntry string representation."""
        entry = DirectoryEntry("a/b.txt", EntryType.FILE, size=1024)
        assert "a/b.txt" in repr(entry)
        assert "1,024" in repr(entry)

    def test_equality_by_value(self):
        """Test that entries compare by value."""
        first = DirectoryEntry("a", EntryType.DIRECTORY, timestamp=1)
        second = DirectoryEntry("a", EntryType.DIRECTORY, timestamp=1)
        assert first == second
        assert len({first, second}) == 1


class TestPermissionMap:
    """Test the visibility to mode table."""

    def test_defaults(self):
        """Test the default modes."""
        permissions = PermissionMap()
        assert permissions.mode_for(EntryType.FILE, Visibility.PUBLIC) == 0o644
        assert permissions.mode_for(EntryType.FILE, Visibility.PRIVATE) == 0o600
        assert permissions.mode_for(EntryType.DIRECTORY, Visibility.PUBLIC) == 0o755
        assert permissions.mode_for(EntryType.DIRECTORY, Visibility.PRIVATE) == 0o700

    def test_overrides_merge_per_key(self):
        """Test that an override replaces only the given mode."""
        permissions = PermissionMap({'file': {'public': 0o640}})
        assert permissions.mode_for(EntryType.FILE, 'public') == 0o640
        assert permissions.mode_for(EntryType.FILE, 'private') == 0o600
        assert permissions.mode_for(EntryType.DIRECTORY, 'public') == 0o755

    def test_unknown_section_rejected(self):
        """Test that only 'file' and 'dir' sections are accepted."""
        with pytest.raises(ValueError, match="Unknown permission section"):
            PermissionMap({'link': {'public': 0o777}})

    def test_unknown_visibility_rejected(self):
        """Test that only public/private keys are accepted."""
        with pytest.raises(ValueError):
            PermissionMap({'file': {'world': 0o666}})

    def test_equality(self):
        """Test that equal tables compare equal."""
        assert PermissionMap({'dir': {'public': 0o755}}) == PermissionMap()
        assert PermissionMap({'dir': {'public': 0o750}}) != PermissionMap()


class TestToBytes:
    """Test contents encoding."""

    def test_str_encoded_as_utf8(self):
        assert to_bytes("héllo") == "héllo".encode("utf-8")

    def test_bytes_pass_through(self):
        assert to_bytes(b"\x00\xff") == b"\x00\xff"
