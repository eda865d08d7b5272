from enum import Enum

class TipoMovimiento(str, Enum):
    ENTRADA = "ENTRADA"  # Recepción (compra)
    SALIDA = "SALIDA"    # Despacho (venta, merma)
    AJUSTE = "AJUSTE"    # Corrección absoluta al stock indicado

class PoliticaSobreventa(str, Enum):
    LIMITAR_A_CERO = "LIMITAR_A_CERO"  # La salida excedente se trunca en 0
    RECHAZAR = "RECHAZAR"              # La salida excedente se rechaza

class TipoPedido(str, Enum):
    COMPRA = "COMPRA"
    VENTA = "VENTA"

class EstadoPedido(str, Enum):
    PENDIENTE = "PENDIENTE"
    PARCIAL = "PARCIAL"
    COMPLETADO = "COMPLETADO"

class EstadoLineaPedido(str, Enum):
    PENDIENTE = "PENDIENTE"
    APLICADO = "APLICADO"
    FALLIDO = "FALLIDO"

class UserRole(str, Enum):
    ADMINISTRADOR = "ADMINISTRADOR"
    ALMACENERO = "ALMACENERO"
    VENDEDOR = "VENDEDOR"
    AUDITOR = "AUDITOR"


# Un pedido de compra ingresa mercadería, uno de venta la despacha
MOVIMIENTO_POR_PEDIDO = {
    TipoPedido.COMPRA: TipoMovimiento.ENTRADA,
    TipoPedido.VENTA: TipoMovimiento.SALIDA,
}
