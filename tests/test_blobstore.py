"""
Tests for the file blob store.
"""

import os
from datetime import datetime

import pytest

from intravatar.blobstore import FileBlobStore, avatar_key, unconfirmed_key
from intravatar.errors import BlobNotFound


class TestFileBlobStore:
    """Test suite for the local file system backend."""

    def test_save_then_load(self, store):
        store.save("avatars/abc", b"data")
        assert store.load("avatars/abc") == b"data"

    def test_save_creates_directories(self, tmp_path):
        s = FileBlobStore(str(tmp_path / "root"))

        s.save("nested/dir/key", b"x")

        assert (tmp_path / "root" / "nested" / "dir" / "key").read_bytes() == b"x"

    def test_load_missing_raises_not_found(self, store):
        with pytest.raises(BlobNotFound):
            store.load("avatars/missing")

    def test_absolute_path_passes_through(self, store, tmp_path):
        outside = tmp_path / "elsewhere.png"
        outside.write_bytes(b"outside")

        assert store.load(str(outside)) == b"outside"
        assert store.full_name(str(outside)) == str(outside)

    def test_relative_key_resolves_under_root(self, store, data_dir):
        assert store.full_name("avatars/x") == os.path.join(str(data_dir), "avatars/x")

    def test_rename_replaces_target(self, store):
        store.save("avatars/h", b"old")
        store.save("unconfirmed/t-h", b"new")

        store.rename("unconfirmed/t-h", "avatars/h")

        assert store.load("avatars/h") == b"new"
        with pytest.raises(BlobNotFound):
            store.load("unconfirmed/t-h")

    def test_rename_missing_source(self, store):
        with pytest.raises(BlobNotFound):
            store.rename("unconfirmed/nope", "avatars/nope")

    def test_find_by_prefix(self, store):
        store.save("unconfirmed/aaa-111", b"1")
        store.save("unconfirmed/bbb-222", b"2")

        assert store.find_by_prefix("unconfirmed", "bbb") == "bbb-222"

    def test_find_by_prefix_no_match(self, store):
        store.save("unconfirmed/aaa-111", b"1")
        with pytest.raises(BlobNotFound):
            store.find_by_prefix("unconfirmed", "zzz")

    def test_last_modified_is_utc(self, store):
        store.save("avatars/t", b"x")
        ts = store.last_modified("avatars/t")
        assert isinstance(ts, datetime)
        assert ts.utcoffset().total_seconds() == 0

    def test_delete_ignores_missing(self, store):
        store.save("avatars/d", b"x")
        store.delete("avatars/d")
        store.delete("avatars/d")
        with pytest.raises(BlobNotFound):
            store.load("avatars/d")


def test_key_layout():
    assert avatar_key("h") == "avatars/h"
    assert unconfirmed_key("h", "t") == "unconfirmed/t-h"
