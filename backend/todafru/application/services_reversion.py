"""
Reversión de Movimientos
========================

Revertir un movimiento lo elimina del ledger y reconstruye el stock como si
nunca hubiera existido:

- Si es el último movimiento del producto, el stock vuelve a su stock_anterior.
- Si hay movimientos posteriores, se reproyectan en orden desde el
  stock_anterior del movimiento revertido. Un AJUSTE posterior conserva su
  stock objetivo y recalcula su delta. El stock del producto queda en el
  último valor reproyectado.

Todo ocurre dentro de RegistradorMovimientos.ejecutar_atomico, con el
producto bloqueado. Si el movimiento venía de un pedido, su línea vuelve a
PENDIENTE en la misma transacción.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..infrastructure.unit_of_work import UnitOfWork
from ..domain.enums import TipoMovimiento, EstadoLineaPedido, PoliticaSobreventa
from ..domain.models import Product
from ..domain.models_pedidos import MODELOS_PEDIDO
from .errores import (
    InventarioError, MovimientoNoEncontradoError, ReversionNoPermitidaError, ReversionParcialPedidoError,
)
from .proyeccion_stock import proyectar_stock, ESCALA
from .services_movimientos import RegistradorMovimientos
from .services_pedidos import obtener_pedido, tipo_pedido, actualizar_estado_pedido
from .services_audit import log_audit, MODULE_INVENTARIO, MODULE_PEDIDOS, ACTION_REVERSE, ACTION_DELETE

logger = logging.getLogger(__name__)


@dataclass
class ResultadoReversion:
    movimiento_id: int
    producto_id: int
    tipo: str
    stock_antes: Decimal
    stock_despues: Decimal
    reproyectados: int


class ReversorMovimientos:
    def __init__(self, uow: UnitOfWork, registrador: Optional[RegistradorMovimientos] = None):
        self.uow = uow
        self.registrador = registrador or RegistradorMovimientos(uow)

    def _validar_manual(self, mov) -> None:
        if mov.pedido is not None:
            raise ReversionNoPermitidaError(
                f"El movimiento {mov.id} pertenece a un pedido de {mov.pedido.tipo.value.lower()}; "
                f"revierta o elimine el pedido"
            )
        if settings.reversion_max_horas > 0:
            limite = datetime.now() - timedelta(hours=settings.reversion_max_horas)
            if mov.created_at < limite:
                raise ReversionNoPermitidaError(
                    f"Solo se pueden revertir movimientos de las últimas {settings.reversion_max_horas} horas"
                )

    def revertir(
        self,
        movimiento_id: int,
        usuario_id: Optional[int] = None,
        permitir_pedido: bool = False,
    ) -> ResultadoReversion:
        """
        Revierte un movimiento y reproyecta los posteriores.

        Args:
            permitir_pedido: permite revertir movimientos originados por pedidos
                (lo usa la eliminación de pedidos; la reversión manual no)

        Raises:
            MovimientoNoEncontradoError, ReversionNoPermitidaError, MovimientoPersistError
        """
        mov = self.uow.movimientos.get(movimiento_id)
        if not mov:
            raise MovimientoNoEncontradoError(f"Movimiento {movimiento_id} no encontrado")
        producto_id = mov.producto_id
        if not permitir_pedido:
            self._validar_manual(mov)

        def operacion(producto: Product) -> ResultadoReversion:
            m = self.uow.movimientos.get(movimiento_id)
            if m is None:
                raise MovimientoNoEncontradoError(f"Movimiento {movimiento_id} no encontrado")
            stock_antes = Decimal(str(producto.stock or 0))
            stock = Decimal(str(m.stock_anterior)).quantize(ESCALA)
            posteriores = self.uow.movimientos.after(m)
            for p in posteriores:
                p.stock_anterior = stock
                if p.tipo == TipoMovimiento.AJUSTE.value:
                    # El AJUSTE fija un valor absoluto: se conserva el objetivo
                    objetivo = Decimal(str(p.stock_nuevo)).quantize(ESCALA)
                    p.cantidad = objetivo - stock
                    stock = objetivo
                else:
                    # Historia ya ocurrida: una salida excedente se trunca, no se rechaza
                    stock = proyectar_stock(stock, p.tipo, p.cantidad, PoliticaSobreventa.LIMITAR_A_CERO)
                    p.stock_nuevo = stock

            ref = m.pedido
            if ref is not None:
                item = self.uow.pedidos.item_de_producto(ref.tipo, ref.id, m.producto_id)
                if item is not None:
                    item.estado_stock = EstadoLineaPedido.PENDIENTE.value
                    item.movimiento_id = None
                    item.error_aplicacion = None
                    actualizar_estado_pedido(self.uow.pedidos.get(ref.tipo, ref.id))

            resultado = ResultadoReversion(
                movimiento_id=m.id,
                producto_id=producto.id,
                tipo=m.tipo,
                stock_antes=stock_antes,
                stock_despues=stock,
                reproyectados=len(posteriores),
            )
            self.uow.db.delete(m)
            producto.stock = stock
            return resultado

        resultado = self.registrador.ejecutar_atomico(producto_id, operacion, exigir_activo=False)

        logger.info(
            "Movimiento %s (%s) revertido: producto %s stock %s -> %s, %s posteriores reproyectados",
            resultado.movimiento_id, resultado.tipo, resultado.producto_id,
            resultado.stock_antes, resultado.stock_despues, resultado.reproyectados,
        )
        log_audit(
            self.uow.db,
            module=MODULE_INVENTARIO,
            action=ACTION_REVERSE,
            entity_type="Movimiento",
            entity_id=resultado.movimiento_id,
            summary=f"Reversión de {resultado.tipo} en producto {resultado.producto_id}",
            metadata_={
                "stock_antes": str(resultado.stock_antes),
                "stock_despues": str(resultado.stock_despues),
                "reproyectados": resultado.reproyectados,
            },
            user_id=usuario_id,
        )
        return resultado

    def revertir_pedido(self, tipo: Any, pedido_id: int, usuario_id: Optional[int] = None) -> List[ResultadoReversion]:
        """
        Revierte todos los movimientos del pedido, del más reciente al más antiguo.
        Cada reversión es independiente; se intentan todas aunque alguna falle.

        Raises:
            PedidoNoEncontradoError
            ReversionParcialPedidoError: alguna reversión falló
        """
        t = tipo_pedido(tipo)
        obtener_pedido(self.uow, t, pedido_id)
        ids = [m.id for m in self.uow.movimientos.of_pedido(t, pedido_id)]

        resultados: List[ResultadoReversion] = []
        fallidos: Dict[int, str] = {}
        for movimiento_id in ids:
            try:
                resultados.append(self.revertir(movimiento_id, usuario_id=usuario_id, permitir_pedido=True))
            except InventarioError as e:
                logger.error("Pedido %s: no se pudo revertir el movimiento %s: %s", pedido_id, movimiento_id, e)
                fallidos[movimiento_id] = str(e)

        if fallidos:
            raise ReversionParcialPedidoError(pedido_id, [r.movimiento_id for r in resultados], fallidos)
        return resultados

    def eliminar_pedido(self, tipo: Any, pedido_id: int, usuario_id: Optional[int] = None) -> List[ResultadoReversion]:
        """
        Revierte los movimientos del pedido y lo elimina.
        Si alguna reversión falla el pedido se conserva.
        """
        t = tipo_pedido(tipo)
        resultados = self.revertir_pedido(t, pedido_id, usuario_id=usuario_id)
        pedido = obtener_pedido(self.uow, t, pedido_id)
        numero = pedido.numero
        try:
            self.uow.db.delete(pedido)
            self.uow.commit()
        except SQLAlchemyError:
            self.uow.rollback()
            logger.exception("No se pudo eliminar el pedido %s", numero)
            raise

        logger.info("Pedido %s eliminado; %s movimientos revertidos", numero, len(resultados))
        log_audit(
            self.uow.db,
            module=MODULE_PEDIDOS,
            action=ACTION_DELETE,
            entity_type=MODELOS_PEDIDO[t].__name__,
            entity_id=pedido_id,
            summary=f"Pedido {numero} eliminado",
            metadata_={"movimientos_revertidos": [r.movimiento_id for r in resultados]},
            user_id=usuario_id,
        )
        return resultados
