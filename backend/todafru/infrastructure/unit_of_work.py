from sqlalchemy.orm import Session
from ..db import SessionLocal
from .repositories import ProductRepository, MovementRepository, PedidoRepository

class UnitOfWork:
    def __init__(self, db: Session = None):
        self.db: Session = db if db is not None else SessionLocal()
        self.productos = ProductRepository(self.db)
        self.movimientos = MovementRepository(self.db)
        self.pedidos = PedidoRepository(self.db)

    def commit(self): self.db.commit()
    def rollback(self): self.db.rollback()
