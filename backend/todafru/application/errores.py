"""
Errores del módulo de inventario
================================
Todos heredan de InventarioError; los routers los traducen a HTTPException.
"""
from typing import List


class InventarioError(Exception):
    """Excepción base para errores del módulo de inventario"""
    pass


class ProductoNoEncontradoError(InventarioError):
    """Error cuando el producto no existe o está inactivo"""
    pass


class TipoMovimientoInvalidoError(InventarioError):
    """Tipo de movimiento distinto de ENTRADA, SALIDA o AJUSTE"""
    pass


class CantidadInvalidaError(InventarioError):
    """Cantidad negativa, no numérica o no finita"""
    pass


class StockInsuficienteError(InventarioError):
    """Salida mayor al stock disponible (solo con política RECHAZAR)"""
    pass


class MovimientoPersistError(InventarioError):
    """
    No se pudo persistir el movimiento.

    Si el fallo ocurrió durante el commit el resultado es incierto: el
    llamador debe verificar el ledger antes de reintentar o reintentar con
    la misma clave de idempotencia.
    """

    def __init__(self, mensaje: str, incierto: bool = False):
        super().__init__(mensaje)
        self.incierto = incierto


class ClaveIdempotenciaError(InventarioError):
    """La clave de idempotencia ya identifica a un movimiento distinto"""
    pass


class MovimientoNoEncontradoError(InventarioError):
    pass


class PedidoNoEncontradoError(InventarioError):
    pass


class PedidoInvalidoError(InventarioError):
    """Datos de pedido inválidos (sin líneas, productos repetidos, montos negativos)"""
    pass


class ReversionNoPermitidaError(InventarioError):
    """El movimiento no se puede revertir manualmente"""
    pass


class AplicacionParcialPedidoError(InventarioError):
    """
    Una línea del pedido falló al aplicarse a inventario.

    Las líneas anteriores quedan aplicadas (no se deshacen), la línea que
    falló queda FALLIDO y las siguientes PENDIENTE. Volver a aplicar el
    pedido continúa desde donde quedó.
    """

    def __init__(
        self,
        pedido_id: int,
        aplicadas: List[int],
        fallidas: List[int],
        pendientes: List[int],
        causa: Exception,
    ):
        super().__init__(
            f"Pedido {pedido_id} aplicado parcialmente: "
            f"{len(aplicadas)} aplicadas, {len(fallidas)} fallidas, {len(pendientes)} pendientes. "
            f"Error: {causa}"
        )
        self.pedido_id = pedido_id
        self.aplicadas = aplicadas
        self.fallidas = fallidas
        self.pendientes = pendientes
        self.causa = causa


class ReversionParcialPedidoError(InventarioError):
    """Algunos movimientos del pedido no se pudieron revertir"""

    def __init__(self, pedido_id: int, revertidos: List[int], fallidos: dict):
        super().__init__(
            f"Pedido {pedido_id}: {len(revertidos)} movimientos revertidos, "
            f"{len(fallidos)} no se pudieron revertir ({', '.join(str(k) for k in fallidos)})"
        )
        self.pedido_id = pedido_id
        self.revertidos = revertidos
        self.fallidos = fallidos
