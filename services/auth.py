# NG-HEADER: Nombre de archivo: auth.py
# NG-HEADER: Ubicación: services/auth.py
# NG-HEADER: Descripción: Control de acceso de las rutas administrativas mediante clave de API.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Control de acceso para rutas ``/admin``.

No hay sesiones ni tokens de usuario: las rutas administrativas exigen el
header ``X-Admin-Key`` con el valor de ``ADMIN_API_KEY``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from tienda_core.config import settings

logger = logging.getLogger("tienda.auth")


@dataclass
class AdminContext:
    """Datos del operador que llama a una ruta administrativa."""

    user_id: Optional[int]
    ip: Optional[str]


def verify_admin_key(candidate: Optional[str]) -> bool:
    if not candidate:
        return False
    expected = settings.admin_api_key
    if not expected:
        # Si no está configurada, rechazar (seguridad por defecto)
        return False
    # Comparación de tiempo constante
    return secrets.compare_digest(candidate, expected)


def require_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(None),
    x_user_id: Optional[int] = Header(None),
) -> AdminContext:
    """Dependencia FastAPI: 401 si falta o no coincide ``X-Admin-Key``."""
    if not verify_admin_key(x_admin_key):
        logger.warning(
            "Acceso admin rechazado %s %s (header=%s)",
            request.method,
            request.url.path,
            "presente" if x_admin_key else "ausente",
        )
        raise HTTPException(status_code=401, detail="No autorizado")
    ip = request.client.host if request.client else None
    return AdminContext(user_id=x_user_id, ip=ip)
