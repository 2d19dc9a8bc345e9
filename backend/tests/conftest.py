import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from locationcheck.config import Settings
from locationcheck.database import close_db, init_db
from locationcheck.dependencies import build_services
from locationcheck.main import create_app

DEVICE_FIELDS = {
    "deviceModel": "iPhone15,2",
    "deviceName": "Test Phone",
    "osVersion": "17.2",
    "screenResolution": "1179x2556",
    "appVersion": "1.0.3",
}


@pytest.fixture
def config(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        data_path=str(tmp_path),
        kdf_iterations=1000,
        cipher_workers=2,
        cipher_queue_size=8,
        cipher_timeout_seconds=10,
        ack_timeout_seconds=5,
        rate_limit_max_requests=10_000,
    )


@pytest.fixture
async def services(config):
    services = build_services(config)
    await init_db(services.engine)
    services.pool.start()
    yield services
    services.pool.shutdown()
    await close_db(services.engine)


@pytest.fixture
def client(config):
    app = create_app(config)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def register(client):
    def _register(device_id="d1", **overrides):
        body = {"deviceId": device_id, **DEVICE_FIELDS, **overrides}
        response = client.post("/api/device/register", json=body)
        assert response.status_code == 201, response.text
        return response.json()["token"]
    return _register


def auth(token):
    return {"Authorization": f"Bearer {token}"}


async def count_rows(services, model, **filters):
    async with services.session_factory() as session:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        return (await session.execute(query)).scalar()
