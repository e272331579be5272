# NG-HEADER: Nombre de archivo: entregas.py
# NG-HEADER: Ubicación: services/routers/entregas.py
# NG-HEADER: Descripción: Administración de la programación de entregas y rutas de repartidores.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from datetime import date, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ProgramacionEntrega
from db.session import get_session
from services import entregas as svc
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import programacion_resource

admin_router = APIRouter(prefix="/admin/entregas", tags=["entregas"])


class ProgramacionIn(BaseModel):
    pedido_id: int
    repartidor_id: int
    fecha_programada: date
    hora_inicio_ventana: time
    hora_fin_ventana: time
    orden_ruta: Optional[int] = Field(None, ge=1)
    notas_repartidor: Optional[str] = None


class ProgramacionUpdate(BaseModel):
    repartidor_id: Optional[int] = None
    fecha_programada: Optional[date] = None
    hora_inicio_ventana: Optional[time] = None
    hora_fin_ventana: Optional[time] = None
    orden_ruta: Optional[int] = Field(None, ge=1)
    notas_repartidor: Optional[str] = None


class EstadoEntregaIn(BaseModel):
    estado: str
    motivo_fallo: Optional[str] = Field(None, max_length=255)
    notas_repartidor: Optional[str] = None


class ReprogramarIn(BaseModel):
    fecha_programada: date
    hora_inicio_ventana: time
    hora_fin_ventana: time
    motivo: str = Field(..., min_length=1, max_length=255)


async def _programacion_o_404(db: AsyncSession, entrega_id: int) -> ProgramacionEntrega:
    e = await db.get(ProgramacionEntrega, entrega_id)
    if not e:
        raise HTTPException(status_code=404, detail="Programación no encontrada")
    return e


@admin_router.get("", dependencies=[Depends(require_admin)])
async def list_entregas(
    repartidor_id: Optional[int] = None,
    pedido_id: Optional[int] = None,
    estado: Optional[str] = None,
    fecha: Optional[date] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(ProgramacionEntrega)
    if repartidor_id is not None:
        stmt = stmt.where(ProgramacionEntrega.repartidor_id == repartidor_id)
    if pedido_id is not None:
        stmt = stmt.where(ProgramacionEntrega.pedido_id == pedido_id)
    if estado:
        stmt = stmt.where(ProgramacionEntrega.estado == estado)
    if fecha is not None:
        stmt = stmt.where(ProgramacionEntrega.fecha_programada == fecha)
    stmt = stmt.order_by(
        ProgramacionEntrega.fecha_programada, ProgramacionEntrega.orden_ruta, ProgramacionEntrega.id
    )
    return await paginar(db, stmt, page, page_size, programacion_resource)


@admin_router.get("/ruta", dependencies=[Depends(require_admin)])
async def ruta_repartidor(repartidor_id: int, fecha: Optional[date] = None, db: AsyncSession = Depends(get_session)):
    """Ruta del día ordenada por ``orden_ruta``; sin ``fecha`` toma hoy."""
    await svc.obtener_repartidor(db, repartidor_id)
    progs, resumen = await svc.ruta_repartidor(db, repartidor_id, fecha or date.today())
    return {"resumen": resumen, "ruta": [programacion_resource(e) for e in progs]}


@admin_router.post("", status_code=201)
async def create_entrega(
    payload: ProgramacionIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    e = await svc.programar(
        db,
        payload.pedido_id,
        payload.repartidor_id,
        payload.fecha_programada,
        payload.hora_inicio_ventana,
        payload.hora_fin_ventana,
        orden_ruta=payload.orden_ruta,
        notas=payload.notas_repartidor,
    )
    audit(
        db, "entrega_programada", "programacion_entregas", e.id,
        {"pedido_id": e.pedido_id, "repartidor_id": e.repartidor_id}, ctx, request,
    )
    await db.commit()
    return programacion_resource(e)


@admin_router.get("/{entrega_id}", dependencies=[Depends(require_admin)])
async def get_entrega(entrega_id: int, db: AsyncSession = Depends(get_session)):
    return programacion_resource(await _programacion_o_404(db, entrega_id))


@admin_router.put("/{entrega_id}")
async def update_entrega(
    entrega_id: int,
    payload: ProgramacionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    e = await _programacion_o_404(db, entrega_id)
    cambios = payload.model_dump(exclude_unset=True, exclude_none=True)
    await svc.modificar(db, e, cambios)
    audit(db, "entrega_update", "programacion_entregas", e.id, {"campos": sorted(cambios)}, ctx, request)
    await db.commit()
    return programacion_resource(e)


@admin_router.delete("/{entrega_id}")
async def delete_entrega(
    entrega_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    e = await _programacion_o_404(db, entrega_id)
    await svc.eliminar(db, e)
    audit(db, "entrega_delete", "programacion_entregas", entrega_id, {"pedido_id": e.pedido_id}, ctx, request)
    await db.commit()
    return {"status": "ok", "id": entrega_id}


@admin_router.post("/{entrega_id}/estado")
async def cambiar_estado_entrega(
    entrega_id: int,
    payload: EstadoEntregaIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    e = await _programacion_o_404(db, entrega_id)
    anterior = e.estado
    await svc.cambiar_estado(db, e, payload.estado, payload.motivo_fallo, payload.notas_repartidor, ctx.user_id)
    audit(db, "entrega_estado", "programacion_entregas", e.id, {"de": anterior, "a": e.estado}, ctx, request)
    await db.commit()
    return programacion_resource(e)


@admin_router.post("/{entrega_id}/reprogramar")
async def reprogramar_entrega(
    entrega_id: int,
    payload: ReprogramarIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    e = await _programacion_o_404(db, entrega_id)
    svc.reprogramar(e, payload.fecha_programada, payload.hora_inicio_ventana, payload.hora_fin_ventana, payload.motivo)
    audit(
        db, "entrega_reprogramada", "programacion_entregas", e.id,
        {"fecha": payload.fecha_programada.isoformat(), "motivo": payload.motivo}, ctx, request,
    )
    await db.commit()
    return programacion_resource(e)
