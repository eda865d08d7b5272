"""
API de Inventario
=================

Movimientos manuales (ENTRADA, SALIDA, AJUSTE, mermas), consulta del
ledger, reversión y auditoría de consistencia del stock.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List

from fastapi import APIRouter, Query, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...dependencies import get_db
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.errores import InventarioError, ProductoNoEncontradoError
from ...application.services_movimientos import RegistradorMovimientos, listar_movimientos, movimiento_con_contexto
from ...application.services_reversion import ReversorMovimientos
from ...application.services_consistencia import auditar_producto, auditar_todos
from ...domain.models import User
from ...security.auth import get_current_user
from ..errores_http import a_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventario", tags=["inventario"])

# ===== MOVIMIENTOS =====

class MovimientoIn(BaseModel):
    producto_id: int
    tipo: str  # ENTRADA | SALIDA | AJUSTE
    cantidad: Decimal  # Para AJUSTE: stock objetivo
    precio: Decimal | None = None
    motivo: str | None = None  # "Merma" para pérdidas
    numero_guia: str | None = None
    clave_idempotencia: str | None = None

class MovimientoOut(BaseModel):
    id: int
    producto_id: int
    tipo: str
    cantidad: Decimal
    stock_anterior: Decimal
    stock_nuevo: Decimal
    precio: Decimal | None = None
    motivo: str | None = None
    numero_guia: str | None = None
    pedido_compra_id: int | None = None
    pedido_venta_id: int | None = None
    usuario_id: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True

class EstadisticaTipo(BaseModel):
    cantidad_movimientos: int
    cantidad_total: Decimal

class MovimientosPage(BaseModel):
    items: List[MovimientoOut]
    total: int
    pagina: int
    por_pagina: int
    estadisticas: Dict[str, EstadisticaTipo]

class MovimientoDetalleOut(BaseModel):
    movimiento: MovimientoOut
    anteriores: List[MovimientoOut]
    posteriores: List[MovimientoOut]

class ReversionOut(BaseModel):
    movimiento_id: int
    producto_id: int
    tipo: str
    stock_antes: Decimal
    stock_despues: Decimal
    reproyectados: int

class StockOut(BaseModel):
    producto_id: int
    sku: str
    nombre: str
    unidad: str
    stock: Decimal
    stock_minimo: Decimal
    bajo_minimo: bool

class HallazgoOut(BaseModel):
    movimiento_id: int
    tipo: str
    detalle: str

    class Config:
        from_attributes = True

class AuditoriaOut(BaseModel):
    producto_id: int
    sku: str
    esperado: Decimal
    actual: Decimal
    deriva: Decimal
    movimientos: int
    consistente: bool
    hallazgos: List[HallazgoOut]

    class Config:
        from_attributes = True


@router.post("/movimientos", response_model=MovimientoOut)
def registrar_movimiento(
    payload: MovimientoIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Registra un movimiento manual y actualiza el stock del producto.

    - ENTRADA suma, SALIDA resta (truncando en 0 según la política), AJUSTE fija el stock
    - Con clave_idempotencia, repetir la petición devuelve el mismo movimiento
    """
    uow = UnitOfWork(db)
    try:
        mov = RegistradorMovimientos(uow).registrar(
            payload.producto_id,
            payload.tipo,
            payload.cantidad,
            usuario_id=current_user.id,
            motivo=payload.motivo,
            precio=payload.precio,
            numero_guia=payload.numero_guia,
            clave_idempotencia=payload.clave_idempotencia,
        )
        return MovimientoOut.model_validate(mov)
    except InventarioError as e:
        raise a_http(e)

@router.get("/movimientos", response_model=MovimientosPage)
def listar(
    producto_id: int | None = Query(None, description="Filtrar por producto"),
    tipo: str | None = Query(None, description="ENTRADA, SALIDA o AJUSTE"),
    fecha_desde: date | None = Query(None, description="Fecha desde"),
    fecha_hasta: date | None = Query(None, description="Fecha hasta"),
    motivo: str | None = Query(None, description="Texto contenido en el motivo"),
    pagina: int = Query(1, ge=1),
    por_pagina: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        items, total, estadisticas = listar_movimientos(
            db, producto_id, tipo, fecha_desde, fecha_hasta, motivo, pagina, por_pagina
        )
    except InventarioError as e:
        raise a_http(e)
    return MovimientosPage(
        items=[MovimientoOut.model_validate(m) for m in items],
        total=total,
        pagina=pagina,
        por_pagina=por_pagina,
        estadisticas={k: EstadisticaTipo(**v) for k, v in estadisticas.items()},
    )

@router.get("/movimientos/{movimiento_id}", response_model=MovimientoDetalleOut)
def detalle(
    movimiento_id: int,
    vecinos: int = Query(3, ge=0, le=50, description="Movimientos de contexto a cada lado"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        mov, anteriores, posteriores = movimiento_con_contexto(UnitOfWork(db), movimiento_id, vecinos)
    except InventarioError as e:
        raise a_http(e)
    return MovimientoDetalleOut(
        movimiento=MovimientoOut.model_validate(mov),
        anteriores=[MovimientoOut.model_validate(m) for m in anteriores],
        posteriores=[MovimientoOut.model_validate(m) for m in posteriores],
    )

@router.delete("/movimientos/{movimiento_id}", response_model=ReversionOut)
def revertir_movimiento(
    movimiento_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Revierte un movimiento manual: se elimina del ledger y el stock se reconstruye.
    Los movimientos de pedidos se revierten eliminando el pedido.
    """
    uow = UnitOfWork(db)
    try:
        r = ReversorMovimientos(uow).revertir(movimiento_id, usuario_id=current_user.id)
    except InventarioError as e:
        raise a_http(e)
    return ReversionOut(**r.__dict__)

# ===== STOCK =====

@router.get("/productos/{producto_id}/stock", response_model=StockOut)
def stock_producto(
    producto_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    producto = UnitOfWork(db).productos.get(producto_id)
    if not producto:
        raise a_http(ProductoNoEncontradoError(f"Producto {producto_id} no encontrado"))
    return StockOut(
        producto_id=producto.id,
        sku=producto.sku,
        nombre=producto.name,
        unidad=producto.unit_of_measure,
        stock=producto.stock,
        stock_minimo=producto.stock_minimo,
        bajo_minimo=producto.bajo_minimo,
    )

# ===== CONSISTENCIA =====

@router.get("/consistencia", response_model=List[AuditoriaOut])
def consistencia(
    solo_con_deriva: bool = Query(True),
    desde_primer_snapshot: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Audita el stock de todos los productos contra su ledger"""
    resultados = auditar_todos(db, solo_con_deriva=solo_con_deriva, desde_primer_snapshot=desde_primer_snapshot)
    if resultados and solo_con_deriva:
        logger.warning("Auditoría de stock: %s productos inconsistentes", len(resultados))
    return [AuditoriaOut.model_validate(r) for r in resultados]

@router.get("/consistencia/{producto_id}", response_model=AuditoriaOut)
def consistencia_producto(
    producto_id: int,
    desde_primer_snapshot: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        return AuditoriaOut.model_validate(auditar_producto(db, producto_id, desde_primer_snapshot))
    except InventarioError as e:
        raise a_http(e)
