from typing import Optional
from fastapi import Header, Query


def get_usuario_id(
    x_usuario_id: Optional[int] = Header(None, alias="X-Usuario-Id"),
    usuario_log_id: Optional[int] = Query(None, description="Usuario que ejecuta la acción (auditoría)"),
) -> Optional[int]:
    """Identificador opaco del usuario que actúa; se usa solo para auditoría."""
    if x_usuario_id is not None:
        return x_usuario_id
    return usuario_log_id


