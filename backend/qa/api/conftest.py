"""
Fixtures para tests de integración API.
Usa TestClient de FastAPI contra la app real sobre la BD de pruebas
(ver qa/conftest.py). El token se firma con la misma SECRET_KEY que
usaría el servicio de autenticación.
"""
import pytest
import sys
from pathlib import Path

# Asegurar que el path permita imports de todafru
root_dir = Path(__file__).parent.parent.parent
sys.path.insert(0, str(root_dir))

from fastapi.testclient import TestClient

# Import app después de path
from todafru.main import app
from todafru.security.auth import create_access_token


@pytest.fixture(scope="session")
def client():
    """Cliente HTTP para tests de API sin autenticación."""
    return TestClient(app)


@pytest.fixture
def auth_headers(usuario):
    """Headers con token válido del usuario de prueba."""
    token = create_access_token({"sub": usuario.username})
    return {"Authorization": f"Bearer {token}"}
