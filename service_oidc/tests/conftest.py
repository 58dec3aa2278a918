"""
Shared fixtures for trust core unit tests.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.test_helpers import ManualClock
from service_oidc.app.models import Authentication, AuthorizationRequest, ClientDetails


@pytest.fixture
def clock():
    """Manually advanced clock starting at 2024-01-01T00:00:00Z."""
    return ManualClock()


@pytest.fixture
def scope():
    return frozenset({"openid", "profile", "email", "offline_access"})


@pytest.fixture
def client():
    """Refresh-eligible client using the default token lifetimes."""
    return ClientDetails(
        client_id="test_client",
        client_secret="secret",
        allow_refresh=True,
    )


@pytest.fixture
def authentication(scope):
    return Authentication(
        authorization_request=AuthorizationRequest(client_id="test_client", scope=scope),
        principal="user1",
        authorities=frozenset({"ROLE_USER"}),
    )


@pytest.fixture
def token_repository():
    repository = MagicMock()
    repository.save_access_token = AsyncMock(side_effect=lambda token: token)
    repository.save_refresh_token = AsyncMock(side_effect=lambda token: token)
    repository.get_access_token_by_value = AsyncMock(return_value=None)
    repository.get_refresh_token_by_value = AsyncMock(return_value=None)
    repository.clear_access_tokens_for_refresh_token = AsyncMock()
    repository.remove_access_token = AsyncMock()
    repository.remove_refresh_token = AsyncMock()
    repository.get_expired_access_tokens = AsyncMock(return_value=[])
    repository.get_expired_refresh_tokens = AsyncMock(return_value=[])
    return repository


@pytest.fixture
def holder_repository():
    repository = MagicMock()
    repository.save = AsyncMock(side_effect=lambda holder: holder)
    return repository


@pytest.fixture
def client_details_service(client):
    service = MagicMock()
    service.load_client_by_client_id = AsyncMock(
        side_effect=lambda client_id: client if client_id == client.client_id else None
    )
    return service


@pytest.fixture
def token_enhancer():
    return MagicMock()
