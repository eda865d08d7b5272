from fastapi import HTTPException

from ..application.errores import (
    InventarioError, ProductoNoEncontradoError, MovimientoNoEncontradoError, PedidoNoEncontradoError,
    MovimientoPersistError, AplicacionParcialPedidoError, ReversionParcialPedidoError, ClaveIdempotenciaError,
)

# Por defecto un InventarioError es un error del cliente (400)
CODIGOS_HTTP = {
    ProductoNoEncontradoError: 404,
    MovimientoNoEncontradoError: 404,
    PedidoNoEncontradoError: 404,
    MovimientoPersistError: 503,
    ClaveIdempotenciaError: 409,
    AplicacionParcialPedidoError: 409,
    ReversionParcialPedidoError: 409,
}


def a_http(e: InventarioError) -> HTTPException:
    codigo = next((c for tipo, c in CODIGOS_HTTP.items() if isinstance(e, tipo)), 400)
    detalle = str(e)
    if isinstance(e, AplicacionParcialPedidoError):
        detalle = {
            "mensaje": str(e),
            "lineas_aplicadas": e.aplicadas,
            "lineas_fallidas": e.fallidas,
            "lineas_pendientes": e.pendientes,
        }
    elif isinstance(e, ReversionParcialPedidoError):
        detalle = {"mensaje": str(e), "revertidos": e.revertidos, "fallidos": e.fallidos}
    return HTTPException(status_code=codigo, detail=detalle)
