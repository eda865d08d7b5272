"""
API de Pedidos
==============
Pedidos de compra y de venta, su aplicación a inventario y su eliminación
(con reversión de los movimientos que originaron).
"""
from datetime import date
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...dependencies import get_db
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.errores import InventarioError
from ...application.services_pedidos import crear_pedido, obtener_pedido, tipo_pedido, AplicadorPedidos
from ...application.services_reversion import ReversorMovimientos
from ...domain.enums import TipoPedido
from ...domain.models import User
from ...security.auth import get_current_user
from ..errores_http import a_http
from .inventario import MovimientoOut

router = APIRouter(prefix="/pedidos", tags=["pedidos"])

class LineaPedidoIn(BaseModel):
    producto_id: int
    cantidad: Decimal
    precio: Decimal = Decimal("0")

class PedidoIn(BaseModel):
    contraparte_id: int  # proveedor (compra) o cliente (venta)
    fecha: date
    lineas: List[LineaPedidoIn]
    observaciones: str | None = None
    numero_guia: str | None = None  # solo compras
    fecha_entrega: date | None = None  # solo ventas
    aplicar: bool = False  # aplicar a inventario al crear

class LineaPedidoOut(BaseModel):
    id: int
    producto_id: int
    cantidad: Decimal
    precio: Decimal
    subtotal: Decimal
    estado_stock: str
    movimiento_id: int | None = None
    error_aplicacion: str | None = None

    class Config:
        from_attributes = True

class PedidoOut(BaseModel):
    id: int
    tipo: str
    numero: str
    contraparte_id: int
    fecha: date
    subtotal: Decimal
    impuestos: Decimal
    total: Decimal
    estado: str
    observaciones: str | None = None
    items: List[LineaPedidoOut]

class AplicacionOut(BaseModel):
    pedido: PedidoOut
    movimientos: List[MovimientoOut]


def _pedido_out(pedido) -> PedidoOut:
    return PedidoOut(
        id=pedido.id,
        tipo=pedido.tipo_pedido.value,
        numero=pedido.numero,
        contraparte_id=pedido.contraparte_id,
        fecha=pedido.fecha,
        subtotal=pedido.subtotal,
        impuestos=pedido.impuestos,
        total=pedido.total,
        estado=pedido.estado,
        observaciones=pedido.observaciones,
        items=[LineaPedidoOut.model_validate(it) for it in pedido.items],
    )

def _tipo(tipo: str) -> TipoPedido:
    try:
        return tipo_pedido(tipo)
    except InventarioError as e:
        raise a_http(e)


@router.post("/{tipo}", response_model=PedidoOut)
def crear(
    tipo: str,
    payload: PedidoIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Crea un pedido de compra o venta.
    Con aplicar=true sus líneas se registran en inventario en la misma petición.
    """
    t = _tipo(tipo)
    uow = UnitOfWork(db)
    try:
        pedido = crear_pedido(
            uow, t, payload.contraparte_id, payload.fecha,
            [l.model_dump() for l in payload.lineas],
            usuario_id=current_user.id,
            observaciones=payload.observaciones,
            numero_guia=payload.numero_guia,
            fecha_entrega=payload.fecha_entrega,
        )
    except InventarioError as e:
        raise a_http(e)
    pedido_id, numero = pedido.id, pedido.numero
    if payload.aplicar:
        try:
            AplicadorPedidos(uow).aplicar_pedido(t, pedido_id, usuario_id=current_user.id)
        except InventarioError as e:
            # El pedido ya está confirmado; se devuelve su id para reintentar solo la aplicación
            error = a_http(e)
            detalle = error.detail if isinstance(error.detail, dict) else {"mensaje": error.detail}
            error.detail = {**detalle, "pedido_id": pedido_id, "numero": numero}
            raise error
    return _pedido_out(obtener_pedido(uow, t, pedido_id))

@router.get("/{tipo}/{pedido_id}", response_model=PedidoOut)
def detalle(
    tipo: str,
    pedido_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        return _pedido_out(obtener_pedido(UnitOfWork(db), _tipo(tipo), pedido_id))
    except InventarioError as e:
        raise a_http(e)

@router.post("/{tipo}/{pedido_id}/aplicar", response_model=AplicacionOut)
def aplicar(
    tipo: str,
    pedido_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Aplica a inventario las líneas pendientes o fallidas del pedido.
    Repetir la petición no duplica movimientos.
    """
    t = _tipo(tipo)
    uow = UnitOfWork(db)
    try:
        movimientos = AplicadorPedidos(uow).aplicar_pedido(t, pedido_id, usuario_id=current_user.id)
        return AplicacionOut(
            pedido=_pedido_out(obtener_pedido(uow, t, pedido_id)),
            movimientos=[MovimientoOut.model_validate(m) for m in movimientos],
        )
    except InventarioError as e:
        raise a_http(e)

@router.delete("/{tipo}/{pedido_id}")
def eliminar(
    tipo: str,
    pedido_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Elimina el pedido revirtiendo los movimientos de inventario que generó"""
    t = _tipo(tipo)
    uow = UnitOfWork(db)
    try:
        resultados = ReversorMovimientos(uow).eliminar_pedido(t, pedido_id, usuario_id=current_user.id)
    except InventarioError as e:
        raise a_http(e)
    return {
        "message": f"Pedido {pedido_id} eliminado exitosamente",
        "movimientos_revertidos": [r.movimiento_id for r in resultados],
    }
