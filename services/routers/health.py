# NG-HEADER: Nombre de archivo: health.py
# NG-HEADER: Ubicación: services/routers/health.py
# NG-HEADER: Descripción: Endpoints de healthcheck y estado de la base de datos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

"""Endpoints de health.

- Liveness básico (`/health`)
- Conectividad DB (`/health/db`)
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from tienda_core.config import settings


router = APIRouter(prefix="/health", tags=["health"])
START_TIME = time.monotonic()


def _status(ok: bool, detail: str | None = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {"ok": ok}
    if detail:
        out["detail"] = detail
    return out


@router.get("")
async def health_root() -> Dict[str, str]:
    """Liveness simple del backend (si responde, está vivo)."""
    return {"status": "ok"}


@router.get("/db")
async def health_db(db: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:  # noqa: BLE001 - se informa el error al cliente
        return {"db": _status(False, str(e)), "env": settings.env}
    return {
        "db": _status(True),
        "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        "uptime_s": round(time.monotonic() - START_TIME, 1),
        "env": settings.env,
    }
