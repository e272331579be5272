# NG-HEADER: Nombre de archivo: ubigeo.py
# NG-HEADER: Ubicación: services/routers/ubigeo.py
# NG-HEADER: Descripción: Endpoints de departamentos, provincias y distritos (ubigeo) y su administración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Departamento, Distrito, Provincia
from db.session import get_session
from services.auditoria import audit
from services.auth import AdminContext, require_admin
from services.resources import distrito_resource

router = APIRouter(prefix="/ubigeo", tags=["ubigeo"])
admin_router = APIRouter(prefix="/admin/ubigeo", tags=["ubigeo"])


class DepartamentoIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=100)
    codigo: str = Field(..., min_length=1, max_length=10)


class ProvinciaIn(BaseModel):
    departamento_id: int
    nombre: str = Field(..., min_length=1, max_length=100)
    codigo: str = Field(..., min_length=1, max_length=10)


class DistritoIn(BaseModel):
    provincia_id: int
    nombre: str = Field(..., min_length=1, max_length=100)
    codigo: str = Field(..., min_length=1, max_length=10)
    codigo_postal: Optional[str] = None
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    disponible_delivery: bool = True


class DistritoUpdate(BaseModel):
    nombre: Optional[str] = Field(None, min_length=1, max_length=100)
    codigo_postal: Optional[str] = None
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    activo: Optional[bool] = None
    disponible_delivery: Optional[bool] = None


@router.get("/departamentos")
async def list_departamentos(db: AsyncSession = Depends(get_session)):
    rows = (await db.execute(
        select(Departamento).where(Departamento.activo.is_(True)).order_by(Departamento.nombre)
    )).scalars().all()
    return [{"id": d.id, "nombre": d.nombre, "codigo": d.codigo} for d in rows]


@router.get("/departamentos/{departamento_id}/provincias")
async def list_provincias(departamento_id: int, db: AsyncSession = Depends(get_session)):
    if not await db.get(Departamento, departamento_id):
        raise HTTPException(status_code=404, detail="Departamento no encontrado")
    rows = (await db.execute(
        select(Provincia)
        .where(Provincia.departamento_id == departamento_id, Provincia.activo.is_(True))
        .order_by(Provincia.nombre)
    )).scalars().all()
    return [{"id": p.id, "departamento_id": p.departamento_id, "nombre": p.nombre, "codigo": p.codigo} for p in rows]


@router.get("/provincias/{provincia_id}/distritos")
async def list_distritos(
    provincia_id: int,
    disponible_delivery: Optional[bool] = None,
    db: AsyncSession = Depends(get_session),
):
    if not await db.get(Provincia, provincia_id):
        raise HTTPException(status_code=404, detail="Provincia no encontrada")
    stmt = select(Distrito).where(Distrito.provincia_id == provincia_id, Distrito.activo.is_(True))
    if disponible_delivery is not None:
        stmt = stmt.where(Distrito.disponible_delivery.is_(disponible_delivery))
    rows = (await db.execute(stmt.order_by(Distrito.nombre))).scalars().all()
    return [distrito_resource(d) for d in rows]


@router.get("/distritos/{distrito_id}")
async def get_distrito(distrito_id: int, db: AsyncSession = Depends(get_session)):
    d = await db.get(Distrito, distrito_id)
    if not d:
        raise HTTPException(status_code=404, detail="Distrito no encontrado")
    return distrito_resource(d)


@admin_router.post("/departamentos", status_code=201)
async def create_departamento(
    payload: DepartamentoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    d = Departamento(nombre=payload.nombre, codigo=payload.codigo)
    db.add(d)
    await db.flush()
    audit(db, "departamento_create", "departamentos", d.id, payload.model_dump(), ctx, request)
    await db.commit()
    return {"id": d.id, "nombre": d.nombre, "codigo": d.codigo}


@admin_router.post("/provincias", status_code=201)
async def create_provincia(
    payload: ProvinciaIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    if not await db.get(Departamento, payload.departamento_id):
        raise HTTPException(status_code=404, detail="Departamento no encontrado")
    p = Provincia(**payload.model_dump())
    db.add(p)
    await db.flush()
    audit(db, "provincia_create", "provincias", p.id, payload.model_dump(), ctx, request)
    await db.commit()
    return {"id": p.id, "departamento_id": p.departamento_id, "nombre": p.nombre, "codigo": p.codigo}


@admin_router.post("/distritos", status_code=201)
async def create_distrito(
    payload: DistritoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    if not await db.get(Provincia, payload.provincia_id):
        raise HTTPException(status_code=404, detail="Provincia no encontrada")
    d = Distrito(**payload.model_dump())
    db.add(d)
    await db.flush()
    audit(db, "distrito_create", "distritos", d.id, payload.model_dump(), ctx, request)
    await db.commit()
    return distrito_resource(d)


@admin_router.patch("/distritos/{distrito_id}")
async def update_distrito(
    distrito_id: int,
    payload: DistritoUpdate,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    d = await db.get(Distrito, distrito_id)
    if not d:
        raise HTTPException(status_code=404, detail="Distrito no encontrado")
    cambios = payload.model_dump(exclude_unset=True)
    for k, v in cambios.items():
        setattr(d, k, v)
    audit(db, "distrito_update", "distritos", d.id, cambios, ctx, request)
    await db.commit()
    return distrito_resource(d)
