import pytest

from wmrecorder.db.store import open_store

from fakes import FIXED_TIME


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "time_tracking_data.db"


@pytest.fixture
def store(db_path):
    s = open_store(db_path)
    yield s
    s.close()


@pytest.fixture
def sleeps():
    """Records requested backoff delays instead of sleeping."""
    return []
