"""
Registro de Movimientos de Inventario
=====================================

RegistradorMovimientos es el único escritor del ledger y de Product.stock.
Cada movimiento se registra en UNA transacción:

    1. Bloquear y leer el producto (SELECT ... FOR UPDATE + version_id)
    2. Proyectar el stock nuevo
    3. Insertar el movimiento con stock_anterior / stock_nuevo
    4. Actualizar Product.stock
    5. Ejecutar el hook opcional (p.ej. marcar la línea del pedido)
    6. Commit

Nunca queda un stock actualizado sin su movimiento ni un movimiento sin su
stock. Los conflictos de escritura (otra transacción modificó el producto)
se reintentan con espera lineal.
"""
import time
import logging
from datetime import date, datetime, time as dtime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..infrastructure.unit_of_work import UnitOfWork
from ..domain.enums import TipoMovimiento, PoliticaSobreventa
from ..domain.models import Product
from ..domain.models_inventario import MovimientoInventario, RefPedido
from .errores import (
    InventarioError, ProductoNoEncontradoError, MovimientoPersistError, MovimientoNoEncontradoError,
    ClaveIdempotenciaError,
)
from .proyeccion_stock import proyectar_stock, cantidad_registrada, a_decimal, tipo_movimiento, MAXIMO_PRECIO
from .services_audit import log_audit, MODULE_INVENTARIO, ACTION_CREATE

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Conflictos que se resuelven volviendo a leer el producto
CONFLICTOS_REINTENTABLES = (StaleDataError, OperationalError)


class RegistradorMovimientos:
    """
    Registra movimientos de inventario y mantiene Product.stock.

    Args:
        uow: unidad de trabajo; su sesión no debe tener cambios pendientes
        politica: política de sobreventa (por defecto settings.politica_sobreventa)
        max_reintentos: intentos ante conflicto de escritura
        backoff: segundos de espera base entre intentos (se multiplica por el intento)
    """

    def __init__(
        self,
        uow: UnitOfWork,
        politica: Optional[PoliticaSobreventa] = None,
        max_reintentos: Optional[int] = None,
        backoff: Optional[float] = None,
    ):
        self.uow = uow
        self.politica = politica or settings.politica_sobreventa
        self.max_reintentos = max(1, max_reintentos or settings.movimiento_max_reintentos)
        self.backoff = settings.movimiento_backoff_segundos if backoff is None else backoff

    def _bloquear_producto(self, producto_id: int, exigir_activo: bool) -> Product:
        producto = self.uow.productos.lock(producto_id)
        if not producto or (exigir_activo and not producto.active):
            raise ProductoNoEncontradoError(f"Producto {producto_id} no encontrado o inactivo")
        return producto

    def ejecutar_atomico(
        self,
        producto_id: int,
        operacion: Callable[[Product], T],
        exigir_activo: bool = True,
        es_duplicado: Optional[Callable[[], bool]] = None,
    ) -> T:
        """
        Ejecuta `operacion(producto)` sobre el producto bloqueado en una transacción.

        La operación puede modificar producto.stock y el ledger; al terminar se
        hace flush (el UPDATE del producto verifica version_id) y commit.
        Ante conflicto se hace rollback y se vuelve a ejecutar la operación
        completa con el producto releído. Una violación de unicidad solo se
        reintenta si `es_duplicado()` confirma que otra transacción ya
        registró el mismo movimiento.

        Raises:
            InventarioError: errores de negocio de la operación (sin reintento)
            MovimientoPersistError: agotados los reintentos o fallo del almacén
        """
        db = self.uow.db
        intento = 0
        while True:
            intento += 1
            try:
                producto = self._bloquear_producto(producto_id, exigir_activo)
                resultado = operacion(producto)
                # Siempre emitir el UPDATE para que el control de versión detecte escrituras concurrentes
                flag_modified(producto, "stock")
                db.flush()
            except InventarioError:
                self.uow.rollback()
                raise
            except CONFLICTOS_REINTENTABLES as e:
                self.uow.rollback()
                if intento >= self.max_reintentos:
                    logger.error(
                        "Producto %s: conflicto de escritura tras %s intentos: %s", producto_id, intento, e
                    )
                    raise MovimientoPersistError(
                        f"No se pudo actualizar el stock del producto {producto_id} "
                        f"tras {intento} intentos por escrituras concurrentes"
                    ) from e
                logger.debug("Producto %s: conflicto de escritura (intento %s), reintentando", producto_id, intento)
                time.sleep(self.backoff * intento)
                continue
            except IntegrityError as e:
                self.uow.rollback()
                if es_duplicado is not None and intento < self.max_reintentos and es_duplicado():
                    logger.info("Producto %s: movimiento registrado por otra transacción, se relee", producto_id)
                    continue
                logger.error("Producto %s: violación de integridad al registrar: %s", producto_id, e)
                raise MovimientoPersistError(
                    f"Error de integridad al persistir el movimiento del producto {producto_id}: {e.orig}"
                ) from e
            except SQLAlchemyError as e:
                self.uow.rollback()
                logger.exception("Producto %s: error del almacén al registrar", producto_id)
                raise MovimientoPersistError(f"Error al persistir el movimiento: {e}") from e
            except Exception:
                self.uow.rollback()
                raise

            try:
                self.uow.commit()
            except SQLAlchemyError as e:
                self.uow.rollback()
                logger.error("Producto %s: fallo en commit, resultado incierto: %s", producto_id, e)
                raise MovimientoPersistError(
                    f"Fallo al confirmar la transacción del producto {producto_id}. "
                    f"Verifique el ledger antes de reintentar",
                    incierto=True,
                ) from e
            return resultado

    def _existente(self, producto_id: int, pedido: Optional[RefPedido], clave: Optional[str]):
        if clave:
            m = self.uow.movimientos.by_clave(clave)
            if m is not None:
                return m
        if pedido is not None:
            return self.uow.movimientos.by_pedido(pedido, producto_id)
        return None

    @staticmethod
    def _validar_repeticion(existente, producto_id: int, t: TipoMovimiento, q: Decimal, clave: str) -> None:
        """La clave solo puede repetirse con el mismo producto, tipo y cantidad"""
        if existente.producto_id != producto_id:
            raise ClaveIdempotenciaError(f"La clave de idempotencia {clave!r} ya se usó para otro producto")
        # AJUSTE guarda el delta; se compara el stock objetivo
        registrada = existente.stock_nuevo if t == TipoMovimiento.AJUSTE else existente.cantidad
        if existente.tipo != t.value or Decimal(str(registrada)) != q:
            raise ClaveIdempotenciaError(
                f"La clave de idempotencia {clave!r} ya se usó para {existente.tipo} de {registrada} "
                f"(movimiento {existente.id})"
            )

    def registrar(
        self,
        producto_id: int,
        tipo: Any,
        cantidad: Any,
        usuario_id: Optional[int] = None,
        motivo: Optional[str] = None,
        precio: Any = None,
        pedido: Optional[RefPedido] = None,
        numero_guia: Optional[str] = None,
        clave_idempotencia: Optional[str] = None,
        al_registrar: Optional[Callable[[MovimientoInventario], None]] = None,
    ) -> MovimientoInventario:
        """
        Registra un movimiento y actualiza el stock del producto.

        Para AJUSTE, `cantidad` es el stock objetivo; el movimiento guarda el delta.
        Si el pedido+producto o la clave de idempotencia ya tienen movimiento,
        se devuelve el existente sin escribir nada.

        Raises:
            TipoMovimientoInvalidoError, CantidadInvalidaError: antes de tocar la BD
            ProductoNoEncontradoError, StockInsuficienteError, MovimientoPersistError
            ClaveIdempotenciaError: la clave ya se usó con otro producto, tipo o cantidad
        """
        clave_idempotencia = (clave_idempotencia or "").strip() or None
        # Validación previa a cualquier I/O
        t = tipo_movimiento(tipo)
        q = a_decimal(cantidad)
        p = a_decimal(precio, "precio", MAXIMO_PRECIO) if precio is not None else None
        creado = False

        def operacion(producto: Product) -> MovimientoInventario:
            nonlocal creado
            existente = self._existente(producto_id, pedido, clave_idempotencia)
            if existente is not None:
                if clave_idempotencia and existente.clave_idempotencia == clave_idempotencia:
                    self._validar_repeticion(existente, producto_id, t, q, clave_idempotencia)
                logger.info("Movimiento %s ya registrado; se devuelve el existente", existente.id)
                if al_registrar:
                    al_registrar(existente)
                return existente

            stock_anterior = Decimal(str(producto.stock or 0))
            stock_nuevo = proyectar_stock(stock_anterior, t, q, self.politica)
            mov = MovimientoInventario(
                producto_id=producto.id,
                tipo=t.value,
                cantidad=cantidad_registrada(stock_anterior, t, q),
                stock_anterior=stock_anterior,
                stock_nuevo=stock_nuevo,
                precio=p,
                motivo=motivo,
                numero_guia=numero_guia,
                clave_idempotencia=clave_idempotencia,
                usuario_id=usuario_id,
                created_at=datetime.now(),
            )
            mov.asignar_pedido(pedido)
            self.uow.movimientos.add(mov)
            producto.stock = stock_nuevo
            self.uow.db.flush()
            if al_registrar:
                al_registrar(mov)
            creado = True
            return mov

        mov = self.ejecutar_atomico(
            producto_id,
            operacion,
            es_duplicado=lambda: self._existente(producto_id, pedido, clave_idempotencia) is not None,
        )

        if creado:
            logger.info(
                "Movimiento %s %s producto=%s cantidad=%s stock %s -> %s",
                mov.id, mov.tipo, producto_id, mov.cantidad, mov.stock_anterior, mov.stock_nuevo,
            )
            if t == TipoMovimiento.SALIDA and q > Decimal(str(mov.stock_anterior)):
                logger.warning(
                    "Producto %s: salida de %s con stock %s truncada a 0", producto_id, q, mov.stock_anterior
                )
            producto = self.uow.productos.get(producto_id)
            if producto is not None and producto.bajo_minimo:
                logger.warning(
                    "Stock bajo: producto %s (%s) quedó en %s, mínimo %s",
                    producto.id, producto.name, producto.stock, producto.stock_minimo,
                )
            log_audit(
                self.uow.db,
                module=MODULE_INVENTARIO,
                action=ACTION_CREATE,
                entity_type="Movimiento",
                entity_id=mov.id,
                summary=f"{mov.tipo} de {q} en producto {producto_id}" + (f" ({motivo})" if motivo else ""),
                metadata_={
                    "stock_anterior": str(mov.stock_anterior),
                    "stock_nuevo": str(mov.stock_nuevo),
                    "pedido": [pedido.tipo.value, pedido.id] if pedido else None,
                },
                user_id=usuario_id,
            )
        return mov


def obtener_movimiento(uow: UnitOfWork, movimiento_id: int) -> MovimientoInventario:
    mov = uow.movimientos.get(movimiento_id)
    if not mov:
        raise MovimientoNoEncontradoError(f"Movimiento {movimiento_id} no encontrado")
    return mov


def movimiento_con_contexto(
    uow: UnitOfWork, movimiento_id: int, vecinos: int = 3
) -> Tuple[MovimientoInventario, List[MovimientoInventario], List[MovimientoInventario]]:
    """Movimiento con los `vecinos` anteriores y posteriores del mismo producto"""
    mov = obtener_movimiento(uow, movimiento_id)
    ledger = uow.movimientos.ledger(mov.producto_id)
    idx = next(i for i, m in enumerate(ledger) if m.id == mov.id)
    return mov, ledger[max(0, idx - vecinos):idx], ledger[idx + 1:idx + 1 + vecinos]


def listar_movimientos(
    db: Session,
    producto_id: Optional[int] = None,
    tipo: Optional[str] = None,
    fecha_desde: Optional[date] = None,
    fecha_hasta: Optional[date] = None,
    motivo: Optional[str] = None,
    pagina: int = 1,
    por_pagina: int = 50,
) -> Tuple[List[MovimientoInventario], int, Dict[str, Dict[str, Any]]]:
    """
    Lista movimientos filtrados, del más reciente al más antiguo.

    Returns:
        (movimientos de la página, total filtrado, estadísticas por tipo)
    """
    q = db.query(MovimientoInventario)
    if producto_id:
        q = q.filter(MovimientoInventario.producto_id == producto_id)
    if tipo:
        q = q.filter(MovimientoInventario.tipo == tipo_movimiento(tipo).value)
    if fecha_desde:
        q = q.filter(MovimientoInventario.created_at >= datetime.combine(fecha_desde, dtime.min))
    if fecha_hasta:
        q = q.filter(MovimientoInventario.created_at <= datetime.combine(fecha_hasta, dtime.max))
    if motivo:
        q = q.filter(MovimientoInventario.motivo.ilike(f"%{motivo}%"))

    total = q.count()

    estadisticas = {t.value: {"cantidad_movimientos": 0, "cantidad_total": Decimal("0")} for t in TipoMovimiento}
    filas = q.with_entities(
        MovimientoInventario.tipo,
        func.count(MovimientoInventario.id),
        func.sum(MovimientoInventario.cantidad),
    ).group_by(MovimientoInventario.tipo).all()
    for t, n, suma in filas:
        estadisticas[t] = {"cantidad_movimientos": n, "cantidad_total": Decimal(str(suma or 0))}

    pagina = max(1, pagina)
    items = q.order_by(
        MovimientoInventario.created_at.desc(), MovimientoInventario.id.desc()
    ).offset((pagina - 1) * por_pagina).limit(por_pagina).all()
    return items, total, estadisticas
