"""Shared fixtures: an isolated data directory and store per test, cloud sync off."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
import feature_flags
from cloud import set_cloud_client
from database import DocumentStore


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the data directory at a temp dir and disable cloud sync."""
    monkeypatch.setenv("LINEAGEWEAVER_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("LINEAGEWEAVER_CLOUD_URL", raising=False)
    set_cloud_client(None)
    feature_flags.reset_feature_flags()
    yield tmp_path
    database.close_all_databases()


@pytest.fixture
def store(data_dir):
    """A fresh document store in the temp data directory."""
    db = DocumentStore(data_dir / "test.db", "test")
    yield db
    db.close()
