from sqlalchemy import Integer, String, Boolean, DateTime, Numeric
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import relationship, Mapped, mapped_column
from ..db import Base
from .enums import UserRole

class User(Base):
    """
    Identidad entregada por el colaborador de autenticación.
    El núcleo solo la guarda en cada movimiento para auditoría.
    """
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    nombre: Mapped[str | None] = mapped_column(String(100), nullable=True)
    correo: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default=UserRole.ALMACENERO.value)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

class Product(Base):
    """
    Producto del catálogo con su contador de stock.

    - stock: saldo corriente; SOLO lo modifica RegistradorMovimientos.ejecutar_atomico
    - stock_minimo: umbral para alerta de stock bajo
    - version_id: control optimista de concurrencia (UPDATE ... WHERE version_id = ?)
    - Nunca se elimina si tiene movimientos; se desactiva con active=False
    """
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sku: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    unit_of_measure: Mapped[str] = mapped_column(String(10), default="KG")  # KG, UN, CJ, etc.
    stock: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    stock_minimo: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    tiene_igv: Mapped[bool] = mapped_column(Boolean, default=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    __mapper_args__ = {"version_id_col": version_id}

    # Relaciones
    movimientos = relationship("MovimientoInventario", back_populates="product")

    @property
    def bajo_minimo(self) -> bool:
        return Decimal(str(self.stock or 0)) < Decimal(str(self.stock_minimo or 0))
