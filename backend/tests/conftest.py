"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL,
et l'acteur authentifié pour éviter de forger des jetons dans chaque test.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from app.database import get_db
from app.main import app
from app.schemas.sync import Actor
from app.security import get_current_actor


@pytest.fixture
def actor_role():
    """Rôle de l'acteur du client de test (surchargeable via parametrize)."""
    return "LABOUR"


@pytest.fixture
def actor(actor_role):
    return Actor(id=uuid.uuid4(), role=actor_role)


@pytest.fixture
def client(actor):
    """Client HTTP de test avec la BDD mockée et un acteur authentifié."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_current_actor] = lambda: actor
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client():
    """Client HTTP sans acteur : l'authentification Bearer réelle s'applique."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
