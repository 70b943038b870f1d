"""Tests for LocalDriver and find_files.

These tests run against /tmp so no external dependencies needed.
"""

import os

import pytest

from storage import LocalDriver, StorageError, SUPPORTED_EXTENSIONS, file_kind, find_files


@pytest.fixture
def driver(temp_dir):
    """Create a LocalDriver instance."""
    return LocalDriver(temp_dir)


@pytest.fixture
def populated_dir(temp_dir):
    """Create a temp directory with some test files and folders."""
    with open(os.path.join(temp_dir, "notes.txt"), "w") as f:
        f.write("content1")
    with open(os.path.join(temp_dir, "scan1.pdf"), "w") as f:
        f.write("pdf content")
    with open(os.path.join(temp_dir, "cover.JPG"), "wb") as f:
        f.write(b"jpg")

    subdir = os.path.join(temp_dir, "subdir")
    os.makedirs(subdir)
    with open(os.path.join(subdir, "nested.txt"), "w") as f:
        f.write("nested content")
    with open(os.path.join(subdir, "nested.png"), "wb") as f:
        f.write(b"png")

    return temp_dir


class TestLocalDriverBasics:
    """Basic functionality tests."""

    def test_display_name(self, driver, temp_dir):
        assert temp_dir in driver.display_name
        assert "local" in driver.display_name

    def test_nonexistent_root_raises(self):
        with pytest.raises(StorageError):
            LocalDriver("/nonexistent/path/12345")

    def test_file_root_raises(self, populated_dir):
        with pytest.raises(StorageError):
            LocalDriver(os.path.join(populated_dir, "notes.txt"))


class TestListFiles:
    """Tests for list_files()."""

    def test_list_files_empty(self, driver):
        assert driver.list_files() == []

    def test_list_files_flat(self, populated_dir):
        files = LocalDriver(populated_dir).list_files()
        names = [f.name for f in files]
        assert "notes.txt" in names
        assert "scan1.pdf" in names
        assert len(files) == 3  # Doesn't include nested

    def test_list_files_recursive(self, populated_dir):
        files = LocalDriver(populated_dir).list_files(recursive=True)
        names = [f.name for f in files]
        assert "nested.txt" in names
        assert len(files) == 5

    def test_extension_filter_is_case_insensitive(self, populated_dir):
        files = LocalDriver(populated_dir).list_files(recursive=True,
                                                     extensions=SUPPORTED_EXTENSIONS)
        names = sorted(f.name for f in files)
        assert names == ["cover.JPG", "nested.png", "scan1.pdf"]

    def test_file_info_kind_and_full_path(self, populated_dir):
        files = LocalDriver(populated_dir).list_files(extensions=SUPPORTED_EXTENSIONS)
        by_name = {f.name: f for f in files}
        assert by_name["scan1.pdf"].kind == "pdf"
        assert by_name["cover.JPG"].kind == "image"
        assert by_name["scan1.pdf"].full_path == os.path.join(populated_dir, "scan1.pdf")
        assert by_name["scan1.pdf"].size == len("pdf content")

    def test_missing_subpath_raises(self, driver):
        with pytest.raises(StorageError):
            driver.list_files("nope")


class TestFileExists:
    """Tests for file_exists()."""

    def test_file_exists_true(self, populated_dir):
        assert LocalDriver(populated_dir).file_exists("notes.txt") is True

    def test_file_exists_false(self, populated_dir):
        assert LocalDriver(populated_dir).file_exists("nonexistent.txt") is False

    def test_file_exists_folder_returns_false(self, populated_dir):
        assert LocalDriver(populated_dir).file_exists("subdir") is False


class TestFindFiles:
    """Tests for find_files() across several folders."""

    def test_skips_missing_folders(self, populated_dir):
        messages = []
        files = find_files(["/nonexistent/path/12345", populated_dir], log=messages.append)
        assert len(files) == 3
        assert any("Error scanning folder" in m for m in messages)

    def test_file_kind(self):
        assert file_kind("a.PDF") == "pdf"
        assert file_kind("a.jpeg") == "image"
        assert file_kind("a.txt") is None
