"""
Tests de reversión de movimientos y eliminación de pedidos
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from todafru.infrastructure.unit_of_work import UnitOfWork
from todafru.application.services_movimientos import RegistradorMovimientos
from todafru.application.services_pedidos import crear_pedido, obtener_pedido, AplicadorPedidos
from todafru.application.services_reversion import ReversorMovimientos
from todafru.application.services_consistencia import auditar_producto
from todafru.application.errores import (
    MovimientoNoEncontradoError, ReversionNoPermitidaError, PedidoNoEncontradoError,
    MovimientoPersistError, ReversionParcialPedidoError,
)
from todafru.domain.enums import EstadoPedido
from todafru.domain.models_inventario import MovimientoInventario

D = Decimal


def _ledger(db, producto_id):
    db.expire_all()
    return db.query(MovimientoInventario).filter(
        MovimientoInventario.producto_id == producto_id
    ).order_by(MovimientoInventario.created_at, MovimientoInventario.id).all()


class TestRevertirMovimiento:
    def test_revertir_el_ultimo_restaura_stock_anterior(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        reg = RegistradorMovimientos(UnitOfWork(db))
        reg.registrar(pid, "ENTRADA", 10)
        m2 = reg.registrar(pid, "SALIDA", 4)
        anterior = m2.stock_anterior

        r = ReversorMovimientos(UnitOfWork(db)).revertir(m2.id)

        assert r.reproyectados == 0
        assert leer_stock(pid) == anterior == D("10")
        assert len(_ledger(db, pid)) == 1
        assert auditar_producto(db, pid).deriva == 0

    def test_revertir_movimiento_intermedio_reproyecta_los_posteriores(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        reg = RegistradorMovimientos(UnitOfWork(db))
        reg.registrar(pid, "ENTRADA", 10)          # 0 -> 10
        m2 = reg.registrar(pid, "ENTRADA", 5)      # 10 -> 15
        reg.registrar(pid, "SALIDA", 12)           # 15 -> 3
        reg.registrar(pid, "ENTRADA", 1)           # 3 -> 4

        r = ReversorMovimientos(UnitOfWork(db)).revertir(m2.id)

        assert r.reproyectados == 2
        ledger = _ledger(db, pid)
        assert [(m.stock_anterior, m.stock_nuevo) for m in ledger] == [
            (D("0"), D("10")), (D("10"), D("0")), (D("0"), D("1")),
        ]
        assert leer_stock(pid) == D("1")
        resultado = auditar_producto(db, pid)
        assert resultado.consistente

    def test_ajuste_posterior_conserva_su_objetivo(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        reg = RegistradorMovimientos(UnitOfWork(db))
        m1 = reg.registrar(pid, "ENTRADA", 10)     # 0 -> 10
        reg.registrar(pid, "AJUSTE", 8)            # 10 -> 8 (delta -2)
        reg.registrar(pid, "SALIDA", 3)            # 8 -> 5

        ReversorMovimientos(UnitOfWork(db)).revertir(m1.id)

        ledger = _ledger(db, pid)
        ajuste = ledger[0]
        assert (ajuste.stock_anterior, ajuste.stock_nuevo, ajuste.cantidad) == (D("0"), D("8"), D("8"))
        assert leer_stock(pid) == D("5")
        assert auditar_producto(db, pid).consistente

    def test_movimiento_inexistente(self, db):
        with pytest.raises(MovimientoNoEncontradoError):
            ReversorMovimientos(UnitOfWork(db)).revertir(12345)

    def test_movimiento_de_pedido_no_se_revierte_manualmente(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "COMPRA", 1, date.today(), [{"producto_id": pid, "cantidad": 3, "precio": 1}])
        mov = AplicadorPedidos(uow).aplicar_pedido("COMPRA", pedido.id)[0]
        with pytest.raises(ReversionNoPermitidaError):
            ReversorMovimientos(uow).revertir(mov.id)
        assert leer_stock(pid) == D("3")

    def test_movimiento_antiguo_no_se_revierte(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        mov = RegistradorMovimientos(UnitOfWork(db)).registrar(pid, "ENTRADA", 3)
        mov.created_at = datetime.now() - timedelta(hours=49)
        db.commit()
        with pytest.raises(ReversionNoPermitidaError):
            ReversorMovimientos(UnitOfWork(db)).revertir(mov.id)
        assert leer_stock(pid) == D("3")

    def test_producto_inactivo_se_puede_revertir(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        mov = RegistradorMovimientos(UnitOfWork(db)).registrar(pid, "ENTRADA", 3)
        producto = UnitOfWork(db).productos.get(pid)
        producto.active = False
        db.commit()
        ReversorMovimientos(UnitOfWork(db)).revertir(mov.id)
        assert leer_stock(pid) == D("0")


class TestRevertirPedido:
    def test_revertir_pedido_devuelve_lineas_a_pendiente(self, db, crear_producto, leer_stock):
        a = crear_producto(stock="10")
        b = crear_producto(stock="10")
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "VENTA", 1, date.today(), [
            {"producto_id": a, "cantidad": 4, "precio": 1},
            {"producto_id": b, "cantidad": 15, "precio": 1},
        ])
        AplicadorPedidos(uow).aplicar_pedido("VENTA", pedido.id)
        assert (leer_stock(a), leer_stock(b)) == (D("6"), D("0"))

        resultados = ReversorMovimientos(uow).revertir_pedido("VENTA", pedido.id)

        assert len(resultados) == 2
        assert (leer_stock(a), leer_stock(b)) == (D("10"), D("10"))
        pedido = obtener_pedido(uow, "VENTA", pedido.id)
        assert pedido.estado == EstadoPedido.PENDIENTE.value
        assert all(it.estado_stock == "PENDIENTE" and it.movimiento_id is None for it in pedido.items)

        # Se puede volver a aplicar
        AplicadorPedidos(uow).aplicar_pedido("VENTA", pedido.id)
        assert leer_stock(a) == D("6")

    def test_eliminar_pedido_con_movimientos_posteriores(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "COMPRA", 1, date.today(), [{"producto_id": pid, "cantidad": 20, "precio": 1}])
        AplicadorPedidos(uow).aplicar_pedido("COMPRA", pedido.id)
        RegistradorMovimientos(uow).registrar(pid, "SALIDA", 5, motivo="Merma")   # 20 -> 15

        ReversorMovimientos(uow).eliminar_pedido("COMPRA", pedido.id)

        with pytest.raises(PedidoNoEncontradoError):
            obtener_pedido(uow, "COMPRA", pedido.id)
        ledger = _ledger(db, pid)
        assert len(ledger) == 1
        assert (ledger[0].stock_anterior, ledger[0].stock_nuevo) == (D("0"), D("0"))
        assert leer_stock(pid) == D("0")
        assert auditar_producto(db, pid).consistente

    def test_reversion_parcial_conserva_el_pedido(self, db, crear_producto, leer_stock, monkeypatch):
        """Falla la reversión de una línea: las demás quedan revertidas y el pedido no se elimina"""
        a = crear_producto(stock="10")
        b = crear_producto(stock="10")
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "VENTA", 1, date.today(), [
            {"producto_id": a, "cantidad": 4, "precio": 1},
            {"producto_id": b, "cantidad": 5, "precio": 1},
        ])
        mov_a, mov_b = AplicadorPedidos(uow).aplicar_pedido("VENTA", pedido.id)
        mov_a_id, mov_b_id = mov_a.id, mov_b.id

        reversor = ReversorMovimientos(uow)
        revertir = reversor.revertir

        def revertir_con_fallo(movimiento_id, **kwargs):
            if movimiento_id == mov_a_id:
                raise MovimientoPersistError("Error al persistir el movimiento: base no disponible")
            return revertir(movimiento_id, **kwargs)

        monkeypatch.setattr(reversor, "revertir", revertir_con_fallo)
        with pytest.raises(ReversionParcialPedidoError) as exc:
            reversor.eliminar_pedido("VENTA", pedido.id)

        assert exc.value.revertidos == [mov_b_id]
        assert list(exc.value.fallidos) == [mov_a_id]
        assert (leer_stock(a), leer_stock(b)) == (D("6"), D("10"))
        assert len(_ledger(db, a)) == 1
        assert _ledger(db, b) == []

        pedido = obtener_pedido(uow, "VENTA", pedido.id)
        assert pedido.estado == EstadoPedido.PARCIAL.value
        estados = {it.producto_id: it.estado_stock for it in pedido.items}
        assert estados == {a: "APLICADO", b: "PENDIENTE"}

    def test_eliminar_pedido_inexistente(self, db):
        with pytest.raises(PedidoNoEncontradoError):
            ReversorMovimientos(UnitOfWork(db)).eliminar_pedido("COMPRA", 77)
