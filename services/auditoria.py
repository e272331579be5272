# NG-HEADER: Nombre de archivo: auditoria.py
# NG-HEADER: Ubicación: services/auditoria.py
# NG-HEADER: Descripción: Registro de auditoría de acciones administrativas y paginación compartida por routers.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from db.models import LogAuditoria
from services.auth import AdminContext

logger = logging.getLogger("tienda.auditoria")

PAGE_SIZE_MAX = 200


def audit(
    db: AsyncSession,
    accion: str,
    tabla: str,
    entidad_id: Optional[int],
    meta: Optional[dict] = None,
    ctx: Optional[AdminContext] = None,
    request: Optional[Request] = None,
) -> None:
    try:
        payload = dict(meta or {})
        if request is not None:
            cid = request.headers.get("x-correlation-id")
            if cid:
                payload.setdefault("correlation_id", cid)
        ip = ctx.ip if ctx else None
        if ip is None and request is not None and request.client:
            ip = request.client.host
        db.add(
            LogAuditoria(
                accion=accion,
                tabla=tabla,
                entidad_id=entidad_id,
                meta=payload,
                user_id=ctx.user_id if ctx else None,
                ip=ip,
            )
        )
    except Exception:
        # La auditoría no debe bloquear el flujo principal
        logger.debug("No se pudo registrar auditoría %s/%s", accion, tabla, exc_info=True)


async def paginar(
    db: AsyncSession,
    stmt: Select,
    page: int,
    page_size: int,
    row: Callable[[Any], dict],
) -> dict:
    """Devuelve ``{"items", "total", "page", "pages"}`` para ``stmt``."""
    page = max(1, int(page or 1))
    page_size = min(PAGE_SIZE_MAX, max(1, int(page_size or 20)))
    total = await db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    rows = (await db.execute(stmt.limit(page_size).offset((page - 1) * page_size))).scalars().all()
    total = int(total or 0)
    return {
        "items": [row(r) for r in rows],
        "total": total,
        "page": page,
        "pages": ((total + page_size - 1) // page_size) if total else 0,
    }
