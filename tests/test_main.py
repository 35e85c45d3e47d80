import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_media_pool
from app.main import app


def test_shutdown_without_uploads_builds_no_media_pool():
    get_media_pool.cache_clear()
    with TestClient(app) as client:
        assert client.get("/").status_code == 200
    assert get_media_pool.cache_info().currsize == 0


def test_shutdown_closes_media_pool_that_was_used():
    get_media_pool.cache_clear()
    with TestClient(app):
        pool = get_media_pool()
    assert get_media_pool.cache_info().currsize == 0
    with pytest.raises(RuntimeError):
        pool._executor.submit(print)
