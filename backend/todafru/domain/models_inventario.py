"""
Modelos del Dominio de Inventario
==================================

MovimientoInventario es el ledger de stock: un registro por cada evento
que cambia el stock de un producto.
- ENTRADA: incrementa (compra, devolución de cliente)
- SALIDA: decrementa (venta, merma); se trunca en 0 según la política vigente
- AJUSTE: fija el stock a un valor absoluto; cantidad guarda el delta implícito

stock_anterior/stock_nuevo forman una cadena por producto: el stock_anterior
de cada movimiento es el stock_nuevo del movimiento previo.
"""
from typing import NamedTuple
from sqlalchemy import Integer, String, ForeignKey, Numeric, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from ..db import Base
from .enums import TipoPedido


class RefPedido(NamedTuple):
    """Pedido que originó un movimiento"""
    tipo: TipoPedido
    id: int


class MovimientoInventario(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        CheckConstraint(
            "pedido_compra_id IS NULL OR pedido_venta_id IS NULL",
            name="ck_movimiento_un_solo_pedido",
        ),
        UniqueConstraint("pedido_compra_id", "product_id", name="uq_movimiento_pedido_compra_producto"),
        UniqueConstraint("pedido_venta_id", "product_id", name="uq_movimiento_pedido_venta_producto"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tipo: Mapped[str] = mapped_column("movement_type", String(20), index=True)  # "ENTRADA" | "SALIDA" | "AJUSTE"
    producto_id: Mapped[int] = mapped_column("product_id", ForeignKey("products.id"), index=True)
    cantidad: Mapped[Decimal] = mapped_column("quantity", Numeric(12, 4))
    stock_anterior: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    stock_nuevo: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    precio: Mapped[Decimal | None] = mapped_column("unit_price", Numeric(14, 4), nullable=True)
    motivo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    numero_guia: Mapped[str | None] = mapped_column(String(100), nullable=True)
    clave_idempotencia: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    pedido_compra_id: Mapped[int | None] = mapped_column(ForeignKey("pedidos_compra.id"), nullable=True, index=True)
    pedido_venta_id: Mapped[int | None] = mapped_column(ForeignKey("pedidos_venta.id"), nullable=True, index=True)
    usuario_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, index=True)

    # Relaciones
    product = relationship("Product", back_populates="movimientos")
    usuario = relationship("User")

    @property
    def pedido(self) -> RefPedido | None:
        if self.pedido_compra_id is not None:
            return RefPedido(TipoPedido.COMPRA, self.pedido_compra_id)
        if self.pedido_venta_id is not None:
            return RefPedido(TipoPedido.VENTA, self.pedido_venta_id)
        return None

    def asignar_pedido(self, ref: RefPedido | None) -> None:
        self.pedido_compra_id = ref.id if ref and ref.tipo == TipoPedido.COMPRA else None
        self.pedido_venta_id = ref.id if ref and ref.tipo == TipoPedido.VENTA else None

    @property
    def delta(self) -> Decimal:
        """Cambio efectivo de stock (puede diferir de cantidad en salidas truncadas)"""
        return Decimal(str(self.stock_nuevo)) - Decimal(str(self.stock_anterior))


def columna_pedido(tipo: TipoPedido):
    """Columna de MovimientoInventario que referencia al pedido del tipo dado"""
    return {
        TipoPedido.COMPRA: MovimientoInventario.pedido_compra_id,
        TipoPedido.VENTA: MovimientoInventario.pedido_venta_id,
    }[tipo]
