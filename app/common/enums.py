"""
Enums compartidos entre compras, pagos, cuentas por pagar y stock
"""
import enum


class Moneda(enum.Enum):
    ARS = "ARS"
    USD = "USD"
    EUR = "EUR"
    OTRO = "Otro"


class Canal(enum.Enum):
    """Circuito de registración del comprobante"""
    C1 = "C1"
    C2 = "C2"
