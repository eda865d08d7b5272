"""
Pedidos y su Aplicación a Inventario
====================================

- crear_pedido: registra un pedido de compra o venta con sus líneas y montos.
  No toca el stock.
- AplicadorPedidos.aplicar_pedido: genera un movimiento por línea a través
  del RegistradorMovimientos (COMPRA -> ENTRADA, VENTA -> SALIDA).

Cada línea se aplica en su propia transacción: el movimiento, el stock y el
estado de la línea se confirman juntos. Si una línea falla, las anteriores
quedan aplicadas, la línea queda FALLIDO y el pedido PARCIAL; volver a
aplicar continúa desde las líneas no aplicadas.
"""
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, NamedTuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config import settings
from ..infrastructure.unit_of_work import UnitOfWork
from ..domain.enums import TipoPedido, EstadoPedido, EstadoLineaPedido, MOVIMIENTO_POR_PEDIDO
from ..domain.models_inventario import MovimientoInventario, RefPedido
from ..domain.models_pedidos import MODELOS_PEDIDO, MODELOS_ITEM_PEDIDO, PREFIJOS_NUMERO_PEDIDO
from .errores import (
    InventarioError, PedidoInvalidoError, PedidoNoEncontradoError, ProductoNoEncontradoError,
    AplicacionParcialPedidoError,
)
from .proyeccion_stock import a_decimal, MAXIMO_PRECIO
from .services_movimientos import RegistradorMovimientos
from .services_audit import log_audit, MODULE_PEDIDOS, ACTION_CREATE, ACTION_APPLY

logger = logging.getLogger(__name__)

CENTAVOS = Decimal("0.01")
INTENTOS_NUMERACION = 3


def tipo_pedido(valor: Any) -> TipoPedido:
    try:
        return valor if isinstance(valor, TipoPedido) else TipoPedido(str(valor).upper())
    except ValueError:
        raise PedidoInvalidoError(f"Tipo de pedido inválido: {valor!r}. Debe ser COMPRA o VENTA")


def _redondear(valor: Decimal) -> Decimal:
    return valor.quantize(CENTAVOS, rounding=ROUND_HALF_UP)


def siguiente_numero(uow: UnitOfWork, tipo: TipoPedido, fecha: date) -> str:
    """
    Número correlativo por tipo y año: PC-2025-000001, PV-2025-000001.
    Bloquea el último pedido emitido hasta el commit.
    """
    prefijo = f"{PREFIJOS_NUMERO_PEDIDO[tipo]}-{fecha.year}-"
    ultimo = uow.pedidos.ultimo_numero(tipo, prefijo)
    secuencial = int(ultimo.rsplit("-", 1)[1]) + 1 if ultimo else 1
    return f"{prefijo}{secuencial:06d}"


def obtener_pedido(uow: UnitOfWork, tipo: Any, pedido_id: int):
    t = tipo_pedido(tipo)
    pedido = uow.pedidos.get(t, pedido_id)
    if not pedido:
        raise PedidoNoEncontradoError(f"Pedido de {t.value.lower()} {pedido_id} no encontrado")
    return pedido


def crear_pedido(
    uow: UnitOfWork,
    tipo: Any,
    contraparte_id: int,
    fecha: date,
    lineas: List[Dict[str, Any]],
    usuario_id: Optional[int] = None,
    observaciones: Optional[str] = None,
    numero_guia: Optional[str] = None,
    fecha_entrega: Optional[date] = None,
):
    """
    Crea un pedido con sus líneas.

    Cada línea: {"producto_id", "cantidad", "precio"}. El IGV
    (settings.tasa_igv) se aplica solo a productos con tiene_igv.

    Raises:
        PedidoInvalidoError: sin líneas, producto repetido, cantidad <= 0
        ProductoNoEncontradoError: producto inexistente o inactivo
    """
    t = tipo_pedido(tipo)
    if not lineas:
        raise PedidoInvalidoError("El pedido debe tener al menos una línea")

    vistos = set()
    normalizadas = []
    for linea in lineas:
        producto_id = linea.get("producto_id")
        if producto_id in vistos:
            raise PedidoInvalidoError(f"El producto {producto_id} está repetido en el pedido")
        vistos.add(producto_id)
        cantidad = a_decimal(linea.get("cantidad"))
        if cantidad <= 0:
            raise PedidoInvalidoError(f"La cantidad del producto {producto_id} debe ser mayor a 0")
        precio = a_decimal(linea.get("precio", 0), "precio", MAXIMO_PRECIO)
        normalizadas.append((producto_id, cantidad, precio))

    Pedido = MODELOS_PEDIDO[t]
    Item = MODELOS_ITEM_PEDIDO[t]

    for intento in range(1, INTENTOS_NUMERACION + 1):
        try:
            subtotal = Decimal("0")
            impuestos = Decimal("0")
            items = []
            for producto_id, cantidad, precio in normalizadas:
                producto = uow.productos.get(producto_id)
                if not producto or not producto.active:
                    raise ProductoNoEncontradoError(f"Producto {producto_id} no encontrado o inactivo")
                sub_linea = _redondear(cantidad * precio)
                subtotal += sub_linea
                if producto.tiene_igv:
                    impuestos += sub_linea * settings.tasa_igv
                items.append(Item(producto_id=producto_id, cantidad=cantidad, precio=precio, subtotal=sub_linea))

            datos = dict(
                numero=siguiente_numero(uow, t, fecha),
                fecha=fecha,
                subtotal=_redondear(subtotal),
                impuestos=_redondear(impuestos),
                estado=EstadoPedido.PENDIENTE.value,
                observaciones=observaciones,
                creado_por_id=usuario_id,
                items=items,
            )
            datos["total"] = datos["subtotal"] + datos["impuestos"]
            if t == TipoPedido.COMPRA:
                pedido = Pedido(proveedor_id=contraparte_id, numero_guia=numero_guia, **datos)
            else:
                pedido = Pedido(cliente_id=contraparte_id, fecha_entrega=fecha_entrega, **datos)
            uow.pedidos.add(pedido)
            uow.db.flush()
            uow.commit()
            break
        except IntegrityError:
            # Otro pedido tomó el mismo número
            uow.rollback()
            if intento == INTENTOS_NUMERACION:
                raise
            logger.info("Número de pedido en uso, reintentando (%s)", intento)
        except Exception:
            uow.rollback()
            raise

    logger.info("Pedido %s creado: %s líneas, total %s", pedido.numero, len(normalizadas), pedido.total)
    log_audit(
        uow.db,
        module=MODULE_PEDIDOS,
        action=ACTION_CREATE,
        entity_type=Pedido.__name__,
        entity_id=pedido.id,
        summary=f"Pedido {pedido.numero} creado",
        metadata_={"total": str(pedido.total), "lineas": len(normalizadas)},
        user_id=usuario_id,
    )
    return pedido


def estado_pedido(estados_lineas: List[str]) -> EstadoPedido:
    """COMPLETADO si todas las líneas están aplicadas, PARCIAL si alguna, PENDIENTE si ninguna"""
    aplicadas = sum(1 for e in estados_lineas if e == EstadoLineaPedido.APLICADO.value)
    if estados_lineas and aplicadas == len(estados_lineas):
        return EstadoPedido.COMPLETADO
    if aplicadas:
        return EstadoPedido.PARCIAL
    return EstadoPedido.PENDIENTE


def actualizar_estado_pedido(pedido) -> None:
    pedido.estado = estado_pedido([it.estado_stock for it in pedido.items]).value


class _Linea(NamedTuple):
    id: int
    producto_id: int
    cantidad: Decimal
    precio: Decimal
    estado: str
    movimiento_id: Optional[int]


class AplicadorPedidos:
    """
    Convierte las líneas de un pedido en movimientos de inventario.
    """

    def __init__(self, uow: UnitOfWork, registrador: Optional[RegistradorMovimientos] = None):
        self.uow = uow
        self.registrador = registrador or RegistradorMovimientos(uow)

    def _marcar_aplicada(self, tipo: TipoPedido, pedido_id: int, item_id: int):
        def hook(mov: MovimientoInventario) -> None:
            item = self.uow.pedidos.item(tipo, item_id)
            item.estado_stock = EstadoLineaPedido.APLICADO.value
            item.movimiento_id = mov.id
            item.error_aplicacion = None
            actualizar_estado_pedido(self.uow.pedidos.get(tipo, pedido_id))
        return hook

    def _marcar_fallida(self, tipo: TipoPedido, pedido_id: int, item_id: int, error: str) -> None:
        """Transacción propia: la línea queda FALLIDO con el texto del error"""
        try:
            item = self.uow.pedidos.item(tipo, item_id)
            item.estado_stock = EstadoLineaPedido.FALLIDO.value
            item.error_aplicacion = error[:500]
            actualizar_estado_pedido(self.uow.pedidos.get(tipo, pedido_id))
            self.uow.commit()
        except SQLAlchemyError:
            self.uow.rollback()
            logger.exception("No se pudo marcar como fallida la línea %s del pedido %s", item_id, pedido_id)

    def aplicar_pedido(self, tipo: Any, pedido_id: int, usuario_id: Optional[int] = None) -> List[MovimientoInventario]:
        """
        Aplica a inventario todas las líneas no aplicadas del pedido.

        Idempotente: las líneas ya aplicadas devuelven su movimiento existente.

        Returns:
            Movimientos de todas las líneas, en el orden de las líneas

        Raises:
            PedidoNoEncontradoError
            AplicacionParcialPedidoError: falló una línea después de aplicar otras
            InventarioError: falló la primera línea a aplicar (nada quedó aplicado)
        """
        t = tipo_pedido(tipo)
        tipo_mov = MOVIMIENTO_POR_PEDIDO[t]
        pedido = obtener_pedido(self.uow, t, pedido_id)
        numero = pedido.numero
        numero_guia = getattr(pedido, "numero_guia", None)
        lineas = [
            _Linea(it.id, it.producto_id, it.cantidad, it.precio, it.estado_stock, it.movimiento_id)
            for it in pedido.items
        ]
        ref = RefPedido(t, pedido_id)

        movimientos: List[MovimientoInventario] = []
        aplicadas: List[int] = []
        nuevas = 0
        for i, linea in enumerate(lineas):
            if linea.estado == EstadoLineaPedido.APLICADO.value and linea.movimiento_id:
                existente = self.uow.movimientos.get(linea.movimiento_id)
                if existente is not None:
                    movimientos.append(existente)
                    aplicadas.append(linea.id)
                    continue
            try:
                mov = self.registrador.registrar(
                    linea.producto_id,
                    tipo_mov,
                    linea.cantidad,
                    usuario_id=usuario_id,
                    motivo=f"Pedido {numero}",
                    precio=linea.precio,
                    pedido=ref,
                    numero_guia=numero_guia,
                    al_registrar=self._marcar_aplicada(t, pedido_id, linea.id),
                )
            except InventarioError as e:
                logger.warning("Pedido %s: falló la línea %s (producto %s): %s", numero, linea.id, linea.producto_id, e)
                self._marcar_fallida(t, pedido_id, linea.id, str(e))
                restantes = lineas[i + 1:]
                aplicadas += [l.id for l in restantes if l.estado == EstadoLineaPedido.APLICADO.value]
                pendientes = [l.id for l in restantes if l.estado != EstadoLineaPedido.APLICADO.value]
                if not aplicadas:
                    raise
                raise AplicacionParcialPedidoError(pedido_id, aplicadas, [linea.id], pendientes, e) from e
            movimientos.append(mov)
            aplicadas.append(linea.id)
            nuevas += 1

        if nuevas:
            logger.info("Pedido %s aplicado a inventario: %s líneas nuevas", numero, nuevas)
            log_audit(
                self.uow.db,
                module=MODULE_PEDIDOS,
                action=ACTION_APPLY,
                entity_type=MODELOS_PEDIDO[t].__name__,
                entity_id=pedido_id,
                summary=f"Pedido {numero} aplicado a inventario",
                metadata_={"movimientos": [m.id for m in movimientos]},
                user_id=usuario_id,
            )
        return movimientos
