import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to sys.path so we can import main
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from main import create_app
from app.services.storage_manager import StorageManager

# Small ceiling so the size boundary can be tested without 100MB bodies
TEST_MAX_FILE_SIZE = 1024
TEST_MAX_FILES = 10


@pytest.fixture
def upload_dir(tmp_path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    return tmp_path / "temp"


@pytest.fixture
def public_dir(tmp_path) -> Path:
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<html><body>Ladybug</body></html>")
    (public / "app.js").write_text("console.log('ladybug');")
    return public


@pytest.fixture
def client(upload_dir, temp_dir, public_dir):
    """Test client over an app rooted in a fresh temporary directory."""
    app = create_app(
        upload_dir=upload_dir,
        temp_dir=temp_dir,
        public_dir=public_dir,
        max_file_size=TEST_MAX_FILE_SIZE,
        max_files=TEST_MAX_FILES,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def storage_manager(upload_dir, temp_dir) -> StorageManager:
    return StorageManager(upload_dir, temp_dir)
