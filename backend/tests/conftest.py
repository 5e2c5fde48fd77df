import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402

from fix_missing_media.utils.upload_dir import UploadDir, default_upload_dir  # noqa: E402

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="module")
def anyio_backend():
    # Limit tests to asyncio backend so local runs do not require the Trio extra.
    return "asyncio"


@pytest.fixture
def uploads_root(tmp_path) -> Path:
    root = tmp_path / "wp-content" / "uploads"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def upload_dir_factory(uploads_root):
    def factory() -> UploadDir:
        return default_upload_dir(
            uploads_root=str(uploads_root),
            site_url="https://staging.example",
            uploads_url_path="/wp-content/uploads",
            now=FIXED_NOW,
        )

    return factory
