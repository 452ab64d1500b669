"""
Test environment

Settings are read at import time, so the environment is pinned here before
any klaviyo_hub module loads: a throwaway SQLite file, console-only logging
and no scheduler.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="klaviyo_hub_tests_")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("KLAVIYO_CLIENT_ID", "test-client")
os.environ.setdefault("KLAVIYO_CLIENT_SECRET", "test-secret")

import pytest

from klaviyo_hub.store.memory import MemoryProfileStore


@pytest.fixture
def store():
    return MemoryProfileStore()
