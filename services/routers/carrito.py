# NG-HEADER: Nombre de archivo: carrito.py
# NG-HEADER: Ubicación: services/routers/carrito.py
# NG-HEADER: Descripción: Endpoints del carrito de compras identificado por el header X-Session-Id.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services import carrito as svc

router = APIRouter(prefix="/carrito", tags=["carrito"])


def session_id(x_session_id: str = Header(..., min_length=1, max_length=100)) -> str:
    return x_session_id.strip()


class ItemIn(BaseModel):
    producto_id: int
    variacion_id: Optional[int] = None
    cantidad: int = Field(1, ge=1)


class CantidadIn(BaseModel):
    cantidad: int


class CuponIn(BaseModel):
    codigo: str = Field(..., min_length=1, max_length=50)


@router.get("")
async def get_carrito(sid: str = Depends(session_id)):
    return svc.serializar(svc.obtener(sid))


@router.post("/items", status_code=201)
async def add_item(payload: ItemIn, sid: str = Depends(session_id), db: AsyncSession = Depends(get_session)):
    carrito = await svc.agregar_item(db, sid, payload.producto_id, payload.cantidad, payload.variacion_id)
    return svc.serializar(carrito)


@router.put("/items/{item_id}")
async def update_item(
    item_id: str,
    payload: CantidadIn,
    sid: str = Depends(session_id),
    db: AsyncSession = Depends(get_session),
):
    """Cantidad 0 o negativa quita el item."""
    return svc.serializar(await svc.actualizar_cantidad(db, sid, item_id, payload.cantidad))


@router.delete("/items/{item_id}")
async def delete_item(item_id: str, sid: str = Depends(session_id)):
    return svc.serializar(svc.remover_item(sid, item_id))


@router.delete("")
async def clear_carrito(sid: str = Depends(session_id)):
    svc.limpiar(sid)
    return svc.serializar(svc.obtener(sid))


@router.post("/cupon")
async def apply_cupon(payload: CuponIn, sid: str = Depends(session_id), db: AsyncSession = Depends(get_session)):
    return svc.serializar(await svc.aplicar_cupon(db, sid, payload.codigo))


@router.delete("/cupon")
async def remove_cupon(sid: str = Depends(session_id)):
    return svc.serializar(svc.remover_cupon(sid))


@router.post("/verificar")
async def verificar(sid: str = Depends(session_id), db: AsyncSession = Depends(get_session)):
    out = await svc.verificar_disponibilidad(db, sid)
    return {"cambios": out["cambios"], "carrito": svc.serializar(out["carrito"])}
