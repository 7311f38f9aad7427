"""Shared pytest fixtures for Jwker operator unit tests."""

import httpx
import pytest

from jwker_operator.utils import jwk as jwkutil
from jwker_operator.utils.broker import BrokerClient, BrokerInstance

from .fakes import (
    BROKER_URL,
    CONTROLLER_CLIENT_ID,
    FakeBroker,
    FakeCoreApi,
    FakeCustomObjectsApi,
)


@pytest.fixture(scope="session")
def controller_jwk() -> dict:
    """The controller's own signing key, generated once per test session."""
    return jwkutil.generate()


@pytest.fixture(scope="session")
def app_jwk() -> dict:
    """A pre-existing application key, as found in a managed secret."""
    return jwkutil.generate()


@pytest.fixture
def core_api() -> FakeCoreApi:
    return FakeCoreApi()


@pytest.fixture
def custom_api() -> FakeCustomObjectsApi:
    return FakeCustomObjectsApi()


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def broker_instance(controller_jwk) -> BrokerInstance:
    return BrokerInstance.from_base_url(BROKER_URL, CONTROLLER_CLIENT_ID, controller_jwk)


@pytest.fixture
async def broker_client(broker_instance, fake_broker):
    broker = BrokerClient(
        [broker_instance], transport=httpx.MockTransport(fake_broker.handler)
    )
    yield broker
    await broker.close()
