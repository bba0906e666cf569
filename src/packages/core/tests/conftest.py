import pytest


@pytest.fixture(autouse=True)
def sqlite_path(tmp_path, monkeypatch):
    """Every test gets its own job store."""
    path = tmp_path / "collector.db"
    monkeypatch.setenv("SQLITE_PATH", str(path))
    return path
