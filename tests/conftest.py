"""
Pytest configuration and shared fixtures.
"""

import pytest

from intravatar.blobstore import AVATAR_DIR, UNCONFIRMED_DIR, FileBlobStore
from intravatar.config import Settings
from intravatar.pending import PendingUploadStore


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def make_settings(data_dir):
    """Build settings rooted in a temporary data dir, with remotes and SMTP off."""
    def _make(**overrides):
        values = {
            "DATA_DIR": str(data_dir),
            "REMOTE": "none",
            "DEFAULT": "remote:monsterid",
            "SMTP_HOST": "",
            "EMAIL_DOMAINS": "",
            "HOST_NAME": "avatars.test",
            "PORT": 8080,
            "SERVICE_URL": None,
            "PENDING_TTL_SECONDS": None,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def store(data_dir):
    s = FileBlobStore(str(data_dir))
    s.ensure_dirs(AVATAR_DIR, UNCONFIRMED_DIR)
    return s


@pytest.fixture
def pending(tmp_path):
    return PendingUploadStore(str(tmp_path / "pending.sqlite"))
