"""
Validación de Consistencia de Stock
===================================

Recalcula el stock de cada producto recorriendo su ledger en orden
(created_at, id) con la misma proyección que usa el registrador y lo
compara con Product.stock. Solo lectura: una deriva es un hallazgo del
reporte, nunca una excepción.

Además de la deriva se reportan:
- rupturas de cadena: stock_anterior distinto del stock_nuevo previo
- snapshots incoherentes: stock_nuevo distinto de la proyección de su propia fila
- referencias huérfanas: movimientos que apuntan a pedidos inexistentes
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from ..domain.enums import TipoMovimiento, PoliticaSobreventa
from ..domain.models import Product
from ..infrastructure.unit_of_work import UnitOfWork
from .errores import ProductoNoEncontradoError
from .proyeccion_stock import proyectar_stock, ESCALA

CERO = Decimal("0")


@dataclass
class HallazgoMovimiento:
    movimiento_id: int
    tipo: str  # RUPTURA_CADENA | SNAPSHOT_INCOHERENTE | PEDIDO_HUERFANO
    detalle: str


@dataclass
class ResultadoAuditoria:
    producto_id: int
    sku: str
    esperado: Decimal
    actual: Decimal
    deriva: Decimal
    movimientos: int
    hallazgos: List[HallazgoMovimiento] = field(default_factory=list)

    @property
    def consistente(self) -> bool:
        return self.deriva == 0 and not self.hallazgos


def _objetivo_ajuste(m) -> Decimal:
    # El AJUSTE guarda el delta; su objetivo es stock_anterior + delta
    return (Decimal(str(m.stock_anterior)) + Decimal(str(m.cantidad))).quantize(ESCALA)


def _proyectar_fila(stock: Decimal, m) -> Decimal:
    if m.tipo == TipoMovimiento.AJUSTE.value:
        return _objetivo_ajuste(m)
    return proyectar_stock(stock, m.tipo, m.cantidad, PoliticaSobreventa.LIMITAR_A_CERO)


def auditar_producto(db: Session, producto_id: int, desde_primer_snapshot: bool = False) -> ResultadoAuditoria:
    """
    Reproduce el ledger de un producto y lo compara con su stock.

    Args:
        desde_primer_snapshot: partir del stock_anterior del primer movimiento
            en lugar de 0 (para productos con stock inicial cargado sin movimiento)
    """
    uow = UnitOfWork(db)
    producto = uow.productos.get(producto_id)
    if not producto:
        raise ProductoNoEncontradoError(f"Producto {producto_id} no encontrado")

    ledger = uow.movimientos.ledger(producto_id)
    hallazgos: List[HallazgoMovimiento] = []

    esperado = CERO
    if desde_primer_snapshot and ledger:
        esperado = Decimal(str(ledger[0].stock_anterior)).quantize(ESCALA)

    previo: Optional[Decimal] = None
    for m in ledger:
        anterior = Decimal(str(m.stock_anterior)).quantize(ESCALA)
        nuevo = Decimal(str(m.stock_nuevo)).quantize(ESCALA)

        if previo is not None and anterior != previo:
            hallazgos.append(HallazgoMovimiento(
                m.id, "RUPTURA_CADENA", f"stock_anterior {anterior} != stock_nuevo previo {previo}"
            ))
        propio = _proyectar_fila(anterior, m)
        if nuevo != propio:
            hallazgos.append(HallazgoMovimiento(
                m.id, "SNAPSHOT_INCOHERENTE", f"stock_nuevo {nuevo} != proyección {propio}"
            ))
        ref = m.pedido
        if ref is not None and uow.pedidos.get(ref.tipo, ref.id) is None:
            hallazgos.append(HallazgoMovimiento(
                m.id, "PEDIDO_HUERFANO", f"pedido de {ref.tipo.value.lower()} {ref.id} no existe"
            ))

        esperado = _proyectar_fila(esperado, m)
        previo = nuevo

    actual = Decimal(str(producto.stock or 0)).quantize(ESCALA)
    return ResultadoAuditoria(
        producto_id=producto.id,
        sku=producto.sku,
        esperado=esperado,
        actual=actual,
        deriva=actual - esperado,
        movimientos=len(ledger),
        hallazgos=hallazgos,
    )


def auditar_todos(
    db: Session, solo_con_deriva: bool = True, desde_primer_snapshot: bool = False
) -> List[ResultadoAuditoria]:
    """Audita todos los productos; por defecto devuelve solo los inconsistentes"""
    ids = [pid for (pid,) in db.query(Product.id).order_by(Product.id).all()]
    resultados = [auditar_producto(db, pid, desde_primer_snapshot) for pid in ids]
    if solo_con_deriva:
        return [r for r in resultados if not r.consistente]
    return resultados
