"""
Test configuration and fixtures for chat tests.

This module provides:
- Users in the roles most tests need (two participants and an outsider)
- A private room between them
- JWT-authenticated API clients
- A fresh delivery fanout per test

Usage:
    def test_example(private_room, ana_client):
        response = ana_client.get(f"/api/v1/chat/messages/{private_room.id}/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import UserFactory
from chat.fanout import DeliveryFanout, set_fanout
from chat.tests.factories import create_private_room


def authenticated_client_for(user) -> APIClient:
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def ana(db):
    return UserFactory(email="ana@example.com", display_name="Ana")


@pytest.fixture
def ben(db):
    return UserFactory(email="ben@example.com", display_name="Ben")


@pytest.fixture
def outsider(db):
    """A user who is not a participant in any fixture room."""
    return UserFactory(email="olga@example.com", display_name="Olga")


# =============================================================================
# Rooms
# =============================================================================


@pytest.fixture
def private_room(ana, ben):
    return create_private_room(ana, ben)


# =============================================================================
# Clients
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def ana_client(ana):
    return authenticated_client_for(ana)


@pytest.fixture
def ben_client(ben):
    return authenticated_client_for(ben)


@pytest.fixture
def outsider_client(outsider):
    return authenticated_client_for(outsider)


# =============================================================================
# Fanout
# =============================================================================


@pytest.fixture(autouse=True)
def fanout():
    """Process-wide fanout replaced for each test so subscriptions never leak."""
    instance = DeliveryFanout()
    set_fanout(instance)
    yield instance
    set_fanout(None)
