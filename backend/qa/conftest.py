"""
Configuración global de pytest para los tests de inventario.
Cada test corre sobre una base SQLite en archivo recién creada.
"""
import os
import sys
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

# La configuración se lee al importar todafru: definir el entorno antes
_tmp_dir = tempfile.mkdtemp(prefix="todafru_qa_")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_tmp_dir) / 'qa.db'}"
os.environ["LOG_DIR"] = str(Path(_tmp_dir) / "logs")
os.environ["SECRET_KEY"] = "qa-secret-key-qa-secret-key-qa-secret"
os.environ["MOVIMIENTO_BACKOFF_SEGUNDOS"] = "0.01"

# Agregar el directorio raíz (backend/) al path para imports
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

from todafru.db import SessionLocal, recreate_schema_from_models  # noqa: E402
from todafru.domain.models import User, Product  # noqa: E402


@pytest.fixture(autouse=True)
def esquema():
    """Esquema limpio para cada test"""
    recreate_schema_from_models()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def usuario(db):
    u = User(username="almacen", nombre="Encargado de Almacén", role="ALMACENERO", active=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def crear_producto(db):
    """Fábrica de productos: devuelve el id del producto creado"""
    contador = {"n": 0}

    def _crear(stock="0", stock_minimo="0", tiene_igv=True, active=True, nombre=None):
        contador["n"] += 1
        p = Product(
            sku=f"FRU-{contador['n']:03d}",
            name=nombre or f"Producto {contador['n']}",
            unit_of_measure="KG",
            stock=Decimal(stock),
            stock_minimo=Decimal(stock_minimo),
            tiene_igv=tiene_igv,
            active=active,
        )
        db.add(p)
        db.commit()
        return p.id

    return _crear


@pytest.fixture
def leer_stock():
    """Stock confirmado en la BD, leído en una sesión nueva"""
    def _leer(producto_id):
        s = SessionLocal()
        try:
            return s.get(Product, producto_id).stock
        finally:
            s.close()
    return _leer
