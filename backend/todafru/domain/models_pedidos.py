"""
Modelos de Pedidos
==================

Pedidos de compra (a proveedor) y de venta (a cliente). Cada línea lleva
su propio estado de aplicación a inventario:

    PENDIENTE -> APLICADO      (movimiento creado)
    PENDIENTE -> FALLIDO       (error al aplicar; se puede reintentar)
    FALLIDO   -> APLICADO      (reintento exitoso)
    APLICADO  -> PENDIENTE     (su movimiento fue revertido)

Proveedor y cliente son referencias simples: su catálogo es externo.
"""
from sqlalchemy import Integer, String, Date, Numeric, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime, date
from decimal import Decimal
from ..db import Base
from .enums import EstadoPedido, EstadoLineaPedido, TipoPedido


class PedidoCompra(Base):
    __tablename__ = "pedidos_compra"
    tipo_pedido = TipoPedido.COMPRA

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    numero: Mapped[str] = mapped_column(String(30), unique=True, index=True)  # PC-2025-000001
    proveedor_id: Mapped[int] = mapped_column(Integer, index=True)
    fecha: Mapped[date] = mapped_column(Date, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    impuestos: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    estado: Mapped[str] = mapped_column(String(20), default=EstadoPedido.PENDIENTE.value)
    numero_guia: Mapped[str | None] = mapped_column(String(100), nullable=True)
    observaciones: Mapped[str | None] = mapped_column(Text, nullable=True)
    creado_por_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    items = relationship(
        "PedidoCompraItem", back_populates="pedido",
        cascade="all, delete-orphan", order_by="PedidoCompraItem.id"
    )

    @property
    def contraparte_id(self) -> int:
        return self.proveedor_id


class PedidoCompraItem(Base):
    __tablename__ = "pedidos_compra_items"
    __table_args__ = (
        UniqueConstraint("pedido_id", "producto_id", name="uq_pedido_compra_item_producto"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos_compra.id", ondelete="CASCADE"), index=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    cantidad: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    precio: Mapped[Decimal] = mapped_column(Numeric(14, 4))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2))  # cantidad * precio (redondeado)
    estado_stock: Mapped[str] = mapped_column(String(20), default=EstadoLineaPedido.PENDIENTE.value)
    movimiento_id: Mapped[int | None] = mapped_column(
        ForeignKey("inventory_movements.id", ondelete="SET NULL"), nullable=True
    )
    error_aplicacion: Mapped[str | None] = mapped_column(String(500), nullable=True)

    pedido = relationship("PedidoCompra", back_populates="items")
    product = relationship("Product")


class PedidoVenta(Base):
    __tablename__ = "pedidos_venta"
    tipo_pedido = TipoPedido.VENTA

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    numero: Mapped[str] = mapped_column(String(30), unique=True, index=True)  # PV-2025-000001
    cliente_id: Mapped[int] = mapped_column(Integer, index=True)
    fecha: Mapped[date] = mapped_column(Date, index=True)
    fecha_entrega: Mapped[date | None] = mapped_column(Date, nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    impuestos: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    estado: Mapped[str] = mapped_column(String(20), default=EstadoPedido.PENDIENTE.value)
    observaciones: Mapped[str | None] = mapped_column(Text, nullable=True)
    creado_por_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    items = relationship(
        "PedidoVentaItem", back_populates="pedido",
        cascade="all, delete-orphan", order_by="PedidoVentaItem.id"
    )

    @property
    def contraparte_id(self) -> int:
        return self.cliente_id


class PedidoVentaItem(Base):
    __tablename__ = "pedidos_venta_items"
    __table_args__ = (
        UniqueConstraint("pedido_id", "producto_id", name="uq_pedido_venta_item_producto"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pedido_id: Mapped[int] = mapped_column(ForeignKey("pedidos_venta.id", ondelete="CASCADE"), index=True)
    producto_id: Mapped[int] = mapped_column(ForeignKey("products.id"), index=True)
    cantidad: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    precio: Mapped[Decimal] = mapped_column(Numeric(14, 4))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    estado_stock: Mapped[str] = mapped_column(String(20), default=EstadoLineaPedido.PENDIENTE.value)
    movimiento_id: Mapped[int | None] = mapped_column(
        ForeignKey("inventory_movements.id", ondelete="SET NULL"), nullable=True
    )
    error_aplicacion: Mapped[str | None] = mapped_column(String(500), nullable=True)

    pedido = relationship("PedidoVenta", back_populates="items")
    product = relationship("Product")


MODELOS_PEDIDO = {
    TipoPedido.COMPRA: PedidoCompra,
    TipoPedido.VENTA: PedidoVenta,
}

MODELOS_ITEM_PEDIDO = {
    TipoPedido.COMPRA: PedidoCompraItem,
    TipoPedido.VENTA: PedidoVentaItem,
}

PREFIJOS_NUMERO_PEDIDO = {
    TipoPedido.COMPRA: "PC",
    TipoPedido.VENTA: "PV",
}
