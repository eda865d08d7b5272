"""
Tests de pedidos: creación, aplicación a inventario e idempotencia
"""
from datetime import date
from decimal import Decimal

import pytest

from todafru.infrastructure.unit_of_work import UnitOfWork
from todafru.application.services_pedidos import crear_pedido, obtener_pedido, AplicadorPedidos, estado_pedido
from todafru.application.errores import (
    PedidoInvalidoError, PedidoNoEncontradoError, ProductoNoEncontradoError,
    AplicacionParcialPedidoError, StockInsuficienteError,
)
from todafru.application.services_movimientos import RegistradorMovimientos
from todafru.domain.enums import TipoPedido, EstadoPedido, EstadoLineaPedido, PoliticaSobreventa
from todafru.domain.models_inventario import MovimientoInventario

D = Decimal
HOY = date(2025, 3, 14)


class TestCrearPedido:
    def test_montos_con_igv_solo_en_productos_gravados(self, db, usuario, crear_producto):
        gravado = crear_producto(tiene_igv=True)
        exonerado = crear_producto(tiene_igv=False)
        pedido = crear_pedido(
            UnitOfWork(db), "COMPRA", 7, HOY,
            [
                {"producto_id": gravado, "cantidad": "10", "precio": "2.50"},
                {"producto_id": exonerado, "cantidad": "4", "precio": "3"},
            ],
            usuario_id=usuario.id,
        )
        assert pedido.numero == "PC-2025-000001"
        assert pedido.subtotal == D("37.00")
        assert pedido.impuestos == D("4.50")
        assert pedido.total == pedido.subtotal + pedido.impuestos
        assert pedido.estado == EstadoPedido.PENDIENTE.value
        assert [it.estado_stock for it in pedido.items] == ["PENDIENTE", "PENDIENTE"]
        assert pedido.contraparte_id == 7

    def test_numeracion_por_tipo_y_anio(self, db, crear_producto):
        pid = crear_producto()
        uow = UnitOfWork(db)
        linea = [{"producto_id": pid, "cantidad": 1, "precio": 1}]
        assert crear_pedido(uow, "VENTA", 1, HOY, linea).numero == "PV-2025-000001"
        assert crear_pedido(uow, "VENTA", 1, HOY, linea).numero == "PV-2025-000002"
        assert crear_pedido(uow, "COMPRA", 1, HOY, linea).numero == "PC-2025-000001"
        assert crear_pedido(uow, "VENTA", 1, date(2026, 1, 2), linea).numero == "PV-2026-000001"

    def test_validaciones(self, db, crear_producto):
        pid = crear_producto()
        uow = UnitOfWork(db)
        with pytest.raises(PedidoInvalidoError):
            crear_pedido(uow, "COMPRA", 1, HOY, [])
        with pytest.raises(PedidoInvalidoError):
            crear_pedido(uow, "COMPRA", 1, HOY, [
                {"producto_id": pid, "cantidad": 1, "precio": 1},
                {"producto_id": pid, "cantidad": 2, "precio": 1},
            ])
        with pytest.raises(PedidoInvalidoError):
            crear_pedido(uow, "COMPRA", 1, HOY, [{"producto_id": pid, "cantidad": 0, "precio": 1}])
        with pytest.raises(PedidoInvalidoError):
            crear_pedido(uow, "DEVOLUCION", 1, HOY, [{"producto_id": pid, "cantidad": 1, "precio": 1}])
        with pytest.raises(ProductoNoEncontradoError):
            crear_pedido(uow, "COMPRA", 1, HOY, [{"producto_id": 999, "cantidad": 1, "precio": 1}])


class TestAplicarPedido:
    def test_compra_genera_entradas(self, db, usuario, crear_producto, leer_stock):
        a = crear_producto(stock="5")
        b = crear_producto()
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, TipoPedido.COMPRA, 3, HOY, [
            {"producto_id": a, "cantidad": "10", "precio": "1"},
            {"producto_id": b, "cantidad": "2.5", "precio": "4"},
        ], numero_guia="T001-123")

        movs = AplicadorPedidos(uow).aplicar_pedido(TipoPedido.COMPRA, pedido.id, usuario_id=usuario.id)

        assert [m.tipo for m in movs] == ["ENTRADA", "ENTRADA"]
        assert all(m.pedido_compra_id == pedido.id for m in movs)
        assert movs[0].numero_guia == "T001-123"
        assert leer_stock(a) == D("15")
        assert leer_stock(b) == D("2.5")
        pedido = obtener_pedido(uow, "COMPRA", pedido.id)
        assert pedido.estado == EstadoPedido.COMPLETADO.value
        assert [it.movimiento_id for it in pedido.items] == [m.id for m in movs]

    def test_venta_genera_salidas(self, db, crear_producto, leer_stock):
        pid = crear_producto(stock="8")
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "VENTA", 3, HOY, [{"producto_id": pid, "cantidad": "3", "precio": "6"}])
        movs = AplicadorPedidos(uow).aplicar_pedido("VENTA", pedido.id)
        assert movs[0].tipo == "SALIDA"
        assert movs[0].pedido_venta_id == pedido.id
        assert leer_stock(pid) == D("5")

    def test_aplicar_dos_veces_no_duplica(self, db, crear_producto, leer_stock):
        pid = crear_producto()
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "COMPRA", 1, HOY, [{"producto_id": pid, "cantidad": "4", "precio": "1"}])
        aplicador = AplicadorPedidos(uow)
        primera = aplicador.aplicar_pedido("COMPRA", pedido.id)
        segunda = aplicador.aplicar_pedido("COMPRA", pedido.id)
        assert [m.id for m in primera] == [m.id for m in segunda]
        db.expire_all()
        assert db.query(MovimientoInventario).count() == 1
        assert leer_stock(pid) == D("4")

    def test_linea_marcada_pendiente_con_movimiento_existente_no_duplica(self, db, crear_producto, leer_stock):
        """Si el estado de la línea se perdió, el movimiento del pedido+producto se reutiliza"""
        pid = crear_producto()
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "COMPRA", 1, HOY, [{"producto_id": pid, "cantidad": "4", "precio": "1"}])
        primera = AplicadorPedidos(uow).aplicar_pedido("COMPRA", pedido.id)

        item = obtener_pedido(uow, "COMPRA", pedido.id).items[0]
        item.estado_stock = EstadoLineaPedido.PENDIENTE.value
        item.movimiento_id = None
        db.commit()

        segunda = AplicadorPedidos(uow).aplicar_pedido("COMPRA", pedido.id)
        assert segunda[0].id == primera[0].id
        assert leer_stock(pid) == D("4")
        assert obtener_pedido(uow, "COMPRA", pedido.id).items[0].estado_stock == "APLICADO"

    def test_fallo_en_linea_intermedia(self, db, crear_producto, leer_stock):
        a = crear_producto(stock="10")
        b = crear_producto(stock="1")
        c = crear_producto(stock="10")
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "VENTA", 1, HOY, [
            {"producto_id": a, "cantidad": "2", "precio": "1"},
            {"producto_id": b, "cantidad": "5", "precio": "1"},
            {"producto_id": c, "cantidad": "3", "precio": "1"},
        ])
        ids = [it.id for it in pedido.items]
        aplicador = AplicadorPedidos(uow, RegistradorMovimientos(uow, politica=PoliticaSobreventa.RECHAZAR))

        with pytest.raises(AplicacionParcialPedidoError) as exc:
            aplicador.aplicar_pedido("VENTA", pedido.id)

        assert exc.value.aplicadas == [ids[0]]
        assert exc.value.fallidas == [ids[1]]
        assert exc.value.pendientes == [ids[2]]
        assert isinstance(exc.value.causa, StockInsuficienteError)
        assert (leer_stock(a), leer_stock(b), leer_stock(c)) == (D("8"), D("1"), D("10"))

        pedido = obtener_pedido(uow, "VENTA", pedido.id)
        assert pedido.estado == EstadoPedido.PARCIAL.value
        assert [it.estado_stock for it in pedido.items] == ["APLICADO", "FALLIDO", "PENDIENTE"]
        assert "Stock insuficiente" in pedido.items[1].error_aplicacion

        # Se repone stock y se reintenta: continúa desde la línea fallida
        RegistradorMovimientos(uow).registrar(b, "ENTRADA", 10)
        movs = aplicador.aplicar_pedido("VENTA", pedido.id)
        assert len(movs) == 3
        assert (leer_stock(a), leer_stock(b), leer_stock(c)) == (D("8"), D("6"), D("7"))
        pedido = obtener_pedido(uow, "VENTA", pedido.id)
        assert pedido.estado == EstadoPedido.COMPLETADO.value
        assert pedido.items[1].error_aplicacion is None

    def test_fallo_en_primera_linea_propaga_error_original(self, db, crear_producto):
        pid = crear_producto(stock="0")
        uow = UnitOfWork(db)
        pedido = crear_pedido(uow, "VENTA", 1, HOY, [{"producto_id": pid, "cantidad": "1", "precio": "1"}])
        aplicador = AplicadorPedidos(uow, RegistradorMovimientos(uow, politica=PoliticaSobreventa.RECHAZAR))
        with pytest.raises(StockInsuficienteError):
            aplicador.aplicar_pedido("VENTA", pedido.id)
        pedido = obtener_pedido(uow, "VENTA", pedido.id)
        assert pedido.estado == EstadoPedido.PENDIENTE.value
        assert pedido.items[0].estado_stock == EstadoLineaPedido.FALLIDO.value

    def test_pedido_inexistente(self, db):
        with pytest.raises(PedidoNoEncontradoError):
            AplicadorPedidos(UnitOfWork(db)).aplicar_pedido("COMPRA", 42)


class TestEstadoPedido:
    @pytest.mark.parametrize("lineas,esperado", [
        (["PENDIENTE", "PENDIENTE"], EstadoPedido.PENDIENTE),
        (["APLICADO", "FALLIDO"], EstadoPedido.PARCIAL),
        (["APLICADO", "APLICADO"], EstadoPedido.COMPLETADO),
        (["FALLIDO"], EstadoPedido.PENDIENTE),
    ])
    def test_estado_segun_lineas(self, lineas, esperado):
        assert estado_pedido(lineas) == esperado
