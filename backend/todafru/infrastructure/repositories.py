from sqlalchemy import or_, and_
from sqlalchemy.orm import Session
from ..domain.enums import TipoPedido
from ..domain.models import Product, User
from ..domain.models_inventario import MovimientoInventario, RefPedido, columna_pedido
from ..domain.models_pedidos import MODELOS_PEDIDO, MODELOS_ITEM_PEDIDO

class ProductRepository:
    def __init__(self, db: Session): self.db = db
    def get(self, id: int): return self.db.get(Product, id)
    def lock(self, id: int):
        """SELECT ... FOR UPDATE y refresca la identidad cargada en la sesión"""
        return (
            self.db.query(Product)
            .filter(Product.id == id)
            .with_for_update()
            .populate_existing()
            .first()
        )

class MovementRepository:
    def __init__(self, db: Session): self.db = db
    def add(self, m: MovimientoInventario): self.db.add(m); return m
    def get(self, id: int): return self.db.get(MovimientoInventario, id)
    def by_clave(self, clave: str):
        return self.db.query(MovimientoInventario).filter(
            MovimientoInventario.clave_idempotencia == clave
        ).first()
    def by_pedido(self, ref: RefPedido, producto_id: int):
        return self.db.query(MovimientoInventario).filter(
            columna_pedido(ref.tipo) == ref.id,
            MovimientoInventario.producto_id == producto_id,
        ).first()
    def of_pedido(self, tipo: TipoPedido, pedido_id: int):
        """Movimientos originados por un pedido, del más reciente al más antiguo"""
        return self.db.query(MovimientoInventario).filter(
            columna_pedido(tipo) == pedido_id
        ).order_by(MovimientoInventario.created_at.desc(), MovimientoInventario.id.desc()).all()
    def ledger(self, producto_id: int):
        """Ledger completo del producto en orden (created_at, id)"""
        return self.db.query(MovimientoInventario).filter(
            MovimientoInventario.producto_id == producto_id
        ).order_by(MovimientoInventario.created_at, MovimientoInventario.id).all()
    def after(self, m: MovimientoInventario):
        """Movimientos del mismo producto posteriores a m en orden del ledger"""
        return self.db.query(MovimientoInventario).filter(
            MovimientoInventario.producto_id == m.producto_id,
            or_(
                MovimientoInventario.created_at > m.created_at,
                and_(MovimientoInventario.created_at == m.created_at, MovimientoInventario.id > m.id),
            ),
        ).order_by(MovimientoInventario.created_at, MovimientoInventario.id).all()

class PedidoRepository:
    def __init__(self, db: Session): self.db = db
    def add(self, p): self.db.add(p); return p
    def get(self, tipo: TipoPedido, id: int):
        return self.db.get(MODELOS_PEDIDO[tipo], id)
    def item(self, tipo: TipoPedido, item_id: int):
        return self.db.get(MODELOS_ITEM_PEDIDO[tipo], item_id)
    def item_de_producto(self, tipo: TipoPedido, pedido_id: int, producto_id: int):
        Item = MODELOS_ITEM_PEDIDO[tipo]
        return self.db.query(Item).filter(Item.pedido_id == pedido_id, Item.producto_id == producto_id).first()
    def ultimo_numero(self, tipo: TipoPedido, prefijo: str):
        """Último número emitido con el prefijo dado (PC-2025-), bloqueando la fila"""
        Pedido = MODELOS_PEDIDO[tipo]
        ultimo_id = (
            self.db.query(Pedido.id)
            .filter(Pedido.numero.like(f"{prefijo}%"))
            .order_by(Pedido.numero.desc())
            .limit(1)
            .scalar()
        )
        if not ultimo_id:
            return None
        return self.db.query(Pedido).filter(Pedido.id == ultimo_id).with_for_update().first().numero

class UserRepository:
    def __init__(self, db: Session): self.db = db
    def by_username(self, username: str):
        return self.db.query(User).filter(User.username == username).first()
