import pytest
from fastapi.testclient import TestClient

from collector_api.deps import get_rate_limiter, get_service
from collector_api.main import app
from collector_api.settings import get_settings
from collector_core.ratelimit import AdmissionRateLimiter, RateLimitConfig

from api_stubs import build_test_service, wait_for_idle


@pytest.fixture
def service():
    return build_test_service()


@pytest.fixture
def client(tmp_path, monkeypatch, service):
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("RESUME_ORPHANED_ON_STARTUP", "false")
    monkeypatch.setenv("STREAM_INTERVAL_SECONDS", "0.05")
    get_settings.cache_clear()
    limiter = AdmissionRateLimiter(RateLimitConfig(enabled=False))
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    with TestClient(app) as c:
        yield c
        wait_for_idle(service)
    app.dependency_overrides.clear()
    get_settings.cache_clear()
