"""HTTP client wired to the per-test database, clock and gateway signer."""

from fastapi.testclient import TestClient
import pytest

from therapy_booking.api.dependencies.database import get_db
from therapy_booking.api.dependencies.services import get_clock, get_payhere_signer
from therapy_booking.main import app


@pytest.fixture
def client(db, clock, signer):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payhere_signer] = lambda: signer
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
