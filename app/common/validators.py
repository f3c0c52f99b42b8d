"""
Validadores y normalizadores para documentos argentinos
"""
import re
from typing import Optional


CUIT_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)


def validate_cuit(cuit: str) -> bool:
    """
    Valida CUIT/CUIL argentino.
    - 11 dígitos (se aceptan guiones y espacios: 20-12345678-3)
    - Prefijo de tipo válido (20, 23, 24, 27, 30, 33, 34)
    - Dígito verificador módulo 11
    """
    cleaned = re.sub(r'[\s\-\.]', '', cuit)

    if not cleaned.isdigit() or len(cleaned) != 11:
        return False

    if cleaned[:2] not in ("20", "23", "24", "27", "30", "33", "34"):
        return False

    total = sum(int(d) * w for d, w in zip(cleaned[:10], CUIT_WEIGHTS))
    dv = 11 - (total % 11)
    if dv == 11:
        dv = 0
    elif dv == 10:
        return False

    return dv == int(cleaned[10])


def normalize_cuit(cuit: str) -> str:
    """Formato canónico XX-XXXXXXXX-X"""
    cleaned = re.sub(r'[\s\-\.]', '', cuit)
    return f"{cleaned[:2]}-{cleaned[2:10]}-{cleaned[10:]}"


def normalize_codigo(codigo: Optional[str]) -> Optional[str]:
    """Códigos de catálogo: sin espacios de borde y en mayúsculas."""
    if codigo is None:
        return None
    codigo = str(codigo).strip().upper()
    return codigo or None


def clean_text(value: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """Recorta espacios; cadena vacía se guarda como NULL."""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise ValueError(f"Máximo {max_length} caracteres")
    return value
