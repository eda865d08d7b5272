"""
Proyección de Stock
===================

Función pura: dado el stock anterior, el tipo de movimiento y la cantidad,
calcula el stock resultante. Es la única definición de cómo cada tipo de
movimiento afecta el stock; la usan el registrador, la reversión (al
reproyectar movimientos posteriores) y la auditoría de consistencia.

- ENTRADA: s + q
- SALIDA:  max(0, s - q) con LIMITAR_A_CERO; con RECHAZAR, q > s es error
- AJUSTE:  q es el stock objetivo; el resultado es q
"""
from decimal import Decimal, InvalidOperation
from typing import Any

from ..domain.enums import TipoMovimiento, PoliticaSobreventa
from .errores import TipoMovimientoInvalidoError, CantidadInvalidaError, StockInsuficienteError

CERO = Decimal("0")
ESCALA = Decimal("0.0001")
# Capacidad de las columnas Numeric(12, 4) y Numeric(14, 4)
MAXIMO_CANTIDAD = Decimal("1e8")
MAXIMO_PRECIO = Decimal("1e10")


def a_decimal(valor: Any, campo: str = "cantidad", maximo: Decimal = MAXIMO_CANTIDAD) -> Decimal:
    """Convierte a Decimal con 4 decimales; rechaza negativos, NaN, infinitos y valores fuera de rango"""
    if isinstance(valor, bool):
        raise CantidadInvalidaError(f"{campo} debe ser numérica")
    try:
        d = valor if isinstance(valor, Decimal) else Decimal(str(valor))
        if not d.is_finite():
            raise CantidadInvalidaError(f"{campo} debe ser un número finito")
        if d < 0:
            raise CantidadInvalidaError(f"{campo} no puede ser negativa: {d}")
        d = d if d >= maximo else d.quantize(ESCALA)
        if d >= maximo:
            raise CantidadInvalidaError(f"{campo} excede el máximo permitido ({maximo:,.0f})")
        return d
    except (InvalidOperation, ValueError, TypeError):
        raise CantidadInvalidaError(f"{campo} debe ser numérica: {valor!r}")


def tipo_movimiento(tipo: Any) -> TipoMovimiento:
    if isinstance(tipo, TipoMovimiento):
        return tipo
    try:
        return TipoMovimiento(str(tipo).upper())
    except ValueError:
        raise TipoMovimientoInvalidoError(
            f"Tipo de movimiento inválido: {tipo!r}. Debe ser ENTRADA, SALIDA o AJUSTE"
        )


def proyectar_stock(
    stock_anterior: Any,
    tipo: Any,
    cantidad: Any,
    politica: PoliticaSobreventa = PoliticaSobreventa.LIMITAR_A_CERO,
) -> Decimal:
    """
    Calcula el stock resultante de aplicar un movimiento.

    Args:
        stock_anterior: stock antes del movimiento (>= 0)
        tipo: ENTRADA | SALIDA | AJUSTE
        cantidad: cantidad movida; para AJUSTE, el stock objetivo
        politica: qué hacer con una salida mayor al stock

    Raises:
        TipoMovimientoInvalidoError, CantidadInvalidaError, StockInsuficienteError
    """
    t = tipo_movimiento(tipo)
    q = a_decimal(cantidad)
    s = Decimal(str(stock_anterior or 0)).quantize(ESCALA)

    if t == TipoMovimiento.ENTRADA:
        nuevo = s + q
        if nuevo >= MAXIMO_CANTIDAD:
            raise CantidadInvalidaError(f"El stock resultante {nuevo} excede el máximo permitido")
        return nuevo
    if t == TipoMovimiento.SALIDA:
        if q > s and politica == PoliticaSobreventa.RECHAZAR:
            raise StockInsuficienteError(f"Stock insuficiente. Disponible: {s}, Requerido: {q}")
        return max(CERO, s - q).quantize(ESCALA)
    return q


def cantidad_registrada(stock_anterior: Any, tipo: Any, cantidad: Any) -> Decimal:
    """
    Cantidad que se guarda en el ledger.
    ENTRADA/SALIDA guardan la cantidad solicitada; AJUSTE guarda el delta implícito (objetivo - anterior).
    """
    t = tipo_movimiento(tipo)
    q = a_decimal(cantidad)
    if t == TipoMovimiento.AJUSTE:
        return q - Decimal(str(stock_anterior or 0)).quantize(ESCALA)
    return q
