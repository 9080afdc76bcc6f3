import shutil
from pathlib import Path

import pytest

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture
def data_dir() -> Path:
    """Wipe and return data-tests/ for tests that touch the filesystem."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    TEST_DATA_DIR.mkdir(parents=True)
    return TEST_DATA_DIR
