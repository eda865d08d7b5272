import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings

os.makedirs("./data", exist_ok=True)

# SQLite: FastAPI usa la sesión desde el threadpool y los escritores concurrentes esperan el lock
connect_args = {"check_same_thread": False, "timeout": 30} if settings.is_sqlite else {}

engine = create_engine(settings.database_url, echo=False, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def _import_all_models():
    """Importa todos los modelos para que Base.metadata los registre."""
    from .domain import models  # noqa: F401 - User, Product
    from .domain import models_pedidos  # noqa: F401 - PedidoCompra, PedidoVenta y sus items
    from .domain import models_inventario  # noqa: F401 - MovimientoInventario
    from .domain import models_audit  # noqa: F401 - AuditLog


def init_db():
    """Crear tablas si no existen (arranque normal)."""
    _import_all_models()
    Base.metadata.create_all(bind=engine)


def recreate_schema_from_models():
    """Elimina todas las tablas y las recrea desde los modelos."""
    _import_all_models()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
