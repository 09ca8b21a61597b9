"""Global test configuration for the dictation learning engine."""

import os

import pytest

from dictation_learning.config import Settings
from dictation_learning.db.local_store import LocalStore
from dictation_learning.engine import build_engine
from dictation_learning.manager.pattern_store import PatternStore
from dictation_learning.manager.sync_queue import SyncQueue

from fakes import FakeCloudStore, FakeOutput, FakeProvider


@pytest.fixture(autouse=True, scope="session")
def _set_test_env_vars(tmp_path_factory):
    """Point settings at a throwaway database.

    Only sets values that aren't already present, so real env vars take
    precedence.
    """
    defaults = {
        "DATABASE_PATH": str(tmp_path_factory.mktemp("settings") / "learning.db"),
        "AI_PROVIDER": "fakes:FakeProvider",
    }
    originals = {}
    for key, value in defaults.items():
        if key not in os.environ:
            os.environ[key] = value
            originals[key] = None
        else:
            originals[key] = os.environ[key]

    # Clear the lru_cache on get_settings so it picks up the new env vars
    from dictation_learning.config import get_settings
    get_settings.cache_clear()

    yield

    for key, original in originals.items():
        if original is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "learning.db")


@pytest.fixture
def local_store(db_path):
    return LocalStore(db_path)


@pytest.fixture
def cloud():
    return FakeCloudStore()


@pytest.fixture
def sync_queue(local_store, cloud):
    # Zero backoff so a failed operation is due again on the next flush
    return SyncQueue(local_store, cloud, base_backoff=0.0, max_backoff=0.0)


@pytest.fixture
def pattern_store(local_store, sync_queue):
    return PatternStore(local_store, sync_queue)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def make_engine(db_path, output):
    """Factory building an engine on fakes with setting overrides."""

    def _make(provider=None, cloud_store=None, **overrides):
        settings = Settings(database_path=db_path, **overrides)
        return build_engine(
            settings,
            provider or FakeProvider(),
            cloud_store=cloud_store,
            output=output,
        )

    return _make
