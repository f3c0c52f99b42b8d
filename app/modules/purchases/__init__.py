"""
Módulo de Compras - Compras360

ENTIDADES PRINCIPALES:
- Purchase: comprobante del proveedor con totales derivados
- PurchaseLine: líneas de detalle (producto o descripción libre)

ESTADOS:
- borrador: editable, no afecta stock ni CxP
- confirmada: genera la CxP y los movimientos de stock COMPRA
- anulada: revierte el stock y deja la CxP cancelada en cero

FLUJO TÍPICO:
1. Crear la compra en borrador con líneas e impuestos
2. Ajustar líneas o impuestos (los totales se recalculan en cada cambio)
3. Confirmar → CxP pendiente + stock
4. Registrar pagos e imputarlos (módulo payments)
5. Anular solo si no hay pagos imputados
"""
