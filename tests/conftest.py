import pytest

from fakes import ManualClock


@pytest.fixture(autouse=True)
def _test_env(tmp_path, monkeypatch):
    # Ensure tests don’t write to repo root
    metrics_dir = tmp_path / "metrics"
    metrics_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("OMNI_METRICS_DIR", str(metrics_dir))
    monkeypatch.setenv("OMNI_METRICS_FILE", str(metrics_dir / "live.ndjson"))
    yield


@pytest.fixture
def clock():
    return ManualClock()
