# NG-HEADER: Nombre de archivo: direcciones.py
# NG-HEADER: Ubicación: services/routers/direcciones.py
# NG-HEADER: Descripción: Endpoints de direcciones de entrega y su validación contra zonas de reparto.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Direccion, DireccionValidada, Distrito, User
from db.session import get_session
from services import direcciones as svc
from services.auditoria import audit
from services.auth import AdminContext, require_admin
from services.resources import direccion_resource, direccion_validada_resource

logger = logging.getLogger("tienda.direcciones")

router = APIRouter(prefix="/direcciones", tags=["direcciones"])
admin_router = APIRouter(prefix="/admin/direcciones", tags=["direcciones"])


class DireccionIn(BaseModel):
    user_id: int
    distrito_id: int
    direccion: str = Field(..., min_length=1, max_length=255)
    referencia: Optional[str] = Field(None, max_length=255)
    codigo_postal: Optional[str] = Field(None, max_length=10)
    numero_exterior: Optional[str] = Field(None, max_length=20)
    numero_interior: Optional[str] = Field(None, max_length=20)
    urbanizacion: Optional[str] = Field(None, max_length=100)
    etapa: Optional[str] = Field(None, max_length=50)
    manzana: Optional[str] = Field(None, max_length=10)
    lote: Optional[str] = Field(None, max_length=10)
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    predeterminada: bool = False
    alias: Optional[str] = Field(None, max_length=50)
    instrucciones_entrega: Optional[str] = None

    @model_validator(mode="after")
    def _coords(self):
        if (self.latitud is None) != (self.longitud is None):
            raise ValueError("latitud y longitud deben enviarse juntas")
        return self


class DireccionUpdate(BaseModel):
    distrito_id: Optional[int] = None
    direccion: Optional[str] = Field(None, min_length=1, max_length=255)
    referencia: Optional[str] = Field(None, max_length=255)
    codigo_postal: Optional[str] = Field(None, max_length=10)
    numero_exterior: Optional[str] = Field(None, max_length=20)
    numero_interior: Optional[str] = Field(None, max_length=20)
    urbanizacion: Optional[str] = Field(None, max_length=100)
    etapa: Optional[str] = Field(None, max_length=50)
    manzana: Optional[str] = Field(None, max_length=10)
    lote: Optional[str] = Field(None, max_length=10)
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    alias: Optional[str] = Field(None, max_length=50)
    instrucciones_entrega: Optional[str] = None


class ValidarIn(BaseModel):
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    observaciones: Optional[str] = None
    monto_pedido: Optional[float] = Field(None, ge=0)
    fecha_hora: Optional[datetime] = None

    @model_validator(mode="after")
    def _coords(self):
        if (self.latitud is None) != (self.longitud is None):
            raise ValueError("latitud y longitud deben enviarse juntas")
        return self


class RevalidarIn(BaseModel):
    direccion_ids: Optional[list[int]] = None
    zona_id: Optional[int] = None


async def _direccion_o_404(db: AsyncSession, direccion_id: int) -> Direccion:
    d = await db.get(Direccion, direccion_id)
    if not d:
        raise HTTPException(status_code=404, detail="Dirección no encontrada")
    return d


async def _validacion(db: AsyncSession, direccion_id: int) -> Optional[DireccionValidada]:
    return (await db.execute(
        select(DireccionValidada).where(DireccionValidada.direccion_id == direccion_id)
    )).scalar_one_or_none()


async def _out(db: AsyncSession, d: Direccion) -> dict:
    return direccion_resource(d, await svc.texto_direccion(db, d), await _validacion(db, d.id))


@router.get("")
async def list_direcciones(user_id: int, db: AsyncSession = Depends(get_session)):
    rows = (await db.execute(
        select(Direccion).where(Direccion.user_id == user_id)
        .order_by(Direccion.predeterminada.desc(), Direccion.id)
    )).scalars().all()
    return [await _out(db, d) for d in rows]


@router.post("", status_code=201)
async def create_direccion(payload: DireccionIn, db: AsyncSession = Depends(get_session)):
    if not await db.get(User, payload.user_id):
        raise HTTPException(status_code=404, detail="Usuario no encontrado")
    d = await svc.crear_direccion(db, payload.model_dump())
    await db.commit()
    return await _out(db, d)


@router.get("/{direccion_id}")
async def get_direccion(direccion_id: int, db: AsyncSession = Depends(get_session)):
    return await _out(db, await _direccion_o_404(db, direccion_id))


@router.put("/{direccion_id}")
async def update_direccion(direccion_id: int, payload: DireccionUpdate, db: AsyncSession = Depends(get_session)):
    d = await _direccion_o_404(db, direccion_id)
    cambios = payload.model_dump(exclude_unset=True)
    if "distrito_id" in cambios:
        distrito = await db.get(Distrito, cambios["distrito_id"])
        if not distrito or not distrito.activo:
            raise HTTPException(status_code=422, detail="Distrito inválido o inactivo")
    for k, v in cambios.items():
        setattr(d, k, v)
    # Cambios de ubicación invalidan la validación previa
    if {"distrito_id", "latitud", "longitud"} & set(cambios):
        d.validada = False
    await db.commit()
    return await _out(db, d)


@router.delete("/{direccion_id}")
async def delete_direccion(direccion_id: int, db: AsyncSession = Depends(get_session)):
    d = await _direccion_o_404(db, direccion_id)
    era_predeterminada = d.predeterminada
    user_id = d.user_id
    await db.delete(d)
    await db.flush()
    if era_predeterminada:
        siguiente = (await db.execute(
            select(Direccion).where(Direccion.user_id == user_id).order_by(Direccion.id).limit(1)
        )).scalar_one_or_none()
        if siguiente is not None:
            await svc.marcar_predeterminada(db, siguiente)
    await db.commit()
    return {"status": "ok", "id": direccion_id}


@router.post("/{direccion_id}/predeterminada")
async def set_predeterminada(direccion_id: int, db: AsyncSession = Depends(get_session)):
    d = await _direccion_o_404(db, direccion_id)
    await svc.marcar_predeterminada(db, d)
    await db.commit()
    return await _out(db, d)


@router.post("/{direccion_id}/validar")
async def validar(direccion_id: int, payload: ValidarIn, db: AsyncSession = Depends(get_session)):
    d = await _direccion_o_404(db, direccion_id)
    validada, res = await svc.validar_direccion(
        db,
        d,
        lat=payload.latitud,
        lng=payload.longitud,
        observaciones=payload.observaciones,
        momento=payload.fecha_hora,
        monto_pedido=payload.monto_pedido,
    )
    await db.commit()
    return {
        "direccion": direccion_resource(d, await svc.texto_direccion(db, d)),
        "validacion": direccion_validada_resource(validada),
        "resolucion": res.as_dict(),
        "valida_para_entrega": validada.es_valida_para_entrega() and res.disponible,
    }


@admin_router.post("/revalidar")
async def revalidar(
    payload: RevalidarIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    resultado = await svc.revalidar(db, payload.direccion_ids, payload.zona_id)
    audit(
        db, "direcciones_revalidar", "direcciones_validadas", None,
        {"procesadas": resultado["total_procesadas"], "errores": len(resultado["errores"])}, ctx, request,
    )
    await db.commit()
    logger.info("Revalidación: %s/%s exitosas", resultado["exitosas"], resultado["total_procesadas"])
    return resultado


@admin_router.get("/estadisticas", dependencies=[Depends(require_admin)])
async def estadisticas(db: AsyncSession = Depends(get_session)):
    return await svc.estadisticas(db)
