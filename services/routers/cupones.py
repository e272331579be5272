# NG-HEADER: Nombre de archivo: cupones.py
# NG-HEADER: Ubicación: services/routers/cupones.py
# NG-HEADER: Descripción: Validación pública de cupones y su administración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TIPOS_CUPON, Cupon
from db.session import get_session
from services import cupones as svc
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import cupon_resource
from tienda_core.dinero import a_decimal, a_float

logger = logging.getLogger("tienda.cupones")

router = APIRouter(prefix="/cupones", tags=["cupones"])
admin_router = APIRouter(prefix="/admin/cupones", tags=["cupones"])


class ValidarIn(BaseModel):
    codigo: str = Field(..., min_length=1, max_length=50)
    subtotal: Optional[float] = Field(None, ge=0)


class CuponIn(BaseModel):
    codigo: str = Field(..., min_length=1, max_length=50)
    descuento: float = Field(..., gt=0)
    tipo: str = "porcentaje"
    fecha_inicio: date
    fecha_fin: date
    limite_uso: Optional[int] = Field(None, ge=1)
    monto_minimo: Optional[float] = Field(None, ge=0)
    monto_maximo_descuento: Optional[float] = Field(None, gt=0)
    activo: bool = True
    descripcion: Optional[str] = None

    @model_validator(mode="after")
    def _reglas(self):
        if self.tipo not in TIPOS_CUPON:
            raise ValueError(f"tipo debe ser uno de {', '.join(TIPOS_CUPON)}")
        if self.tipo == "porcentaje" and self.descuento > 100:
            raise ValueError("Un descuento porcentual no puede superar 100")
        if self.fecha_inicio > self.fecha_fin:
            raise ValueError("fecha_inicio no puede ser posterior a fecha_fin")
        return self


class CuponUpdate(BaseModel):
    descuento: Optional[float] = Field(None, gt=0)
    fecha_fin: Optional[date] = None
    limite_uso: Optional[int] = Field(None, ge=1)
    monto_minimo: Optional[float] = Field(None, ge=0)
    monto_maximo_descuento: Optional[float] = Field(None, gt=0)
    activo: Optional[bool] = None
    descripcion: Optional[str] = None


@router.post("/validar")
async def validar(payload: ValidarIn, db: AsyncSession = Depends(get_session)):
    """Nunca responde error: ``valido`` indica si el cupón aplica."""
    cupon = await svc.buscar_cupon(db, payload.codigo)
    motivo = svc.motivo_rechazo(cupon, payload.subtotal)
    if motivo:
        return {"valido": False, "mensaje": motivo}
    out = {"valido": True, "mensaje": "Cupón válido", "cupon": cupon_resource(cupon)}
    if payload.subtotal is not None:
        out["descuento"] = a_float(svc.calcular_descuento(cupon, payload.subtotal))
    return out


@admin_router.get("", dependencies=[Depends(require_admin)])
async def list_cupones(
    activo: Optional[bool] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(Cupon)
    if activo is not None:
        stmt = stmt.where(Cupon.activo.is_(activo))
    hoy = date.today()
    return await paginar(db, stmt.order_by(Cupon.id.desc()), page, page_size, lambda c: cupon_resource(c, hoy))


@admin_router.post("", status_code=201)
async def create_cupon(
    payload: CuponIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    codigo = svc.normalizar_codigo(payload.codigo)
    if await svc.buscar_cupon(db, codigo):
        raise HTTPException(status_code=409, detail={"code": "cupon_duplicado", "message": "El código ya existe"})
    c = Cupon(
        codigo=codigo,
        descuento=a_decimal(payload.descuento),
        tipo=payload.tipo,
        fecha_inicio=payload.fecha_inicio,
        fecha_fin=payload.fecha_fin,
        limite_uso=payload.limite_uso,
        usos=0,
        monto_minimo=a_decimal(payload.monto_minimo) if payload.monto_minimo is not None else None,
        monto_maximo_descuento=(
            a_decimal(payload.monto_maximo_descuento) if payload.monto_maximo_descuento is not None else None
        ),
        activo=payload.activo,
        descripcion=payload.descripcion,
    )
    db.add(c)
    await db.flush()
    audit(db, "cupon_create", "cupones", c.id, {"codigo": codigo}, ctx, request)
    await db.commit()
    logger.info("Cupón %s creado", codigo)
    return cupon_resource(c)


@admin_router.put("/{cupon_id}")
async def update_cupon(
    cupon_id: int,
    payload: CuponUpdate,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    c = await db.get(Cupon, cupon_id)
    if not c:
        raise HTTPException(status_code=404, detail="Cupón no encontrado")
    cambios = payload.model_dump(exclude_unset=True)
    if "descuento" in cambios and c.tipo == "porcentaje" and cambios["descuento"] > 100:
        raise HTTPException(status_code=422, detail="Un descuento porcentual no puede superar 100")
    if cambios.get("fecha_fin") and cambios["fecha_fin"] < c.fecha_inicio:
        raise HTTPException(status_code=422, detail="fecha_fin no puede ser anterior a fecha_inicio")
    if cambios.get("limite_uso") is not None and cambios["limite_uso"] < int(c.usos or 0):
        raise HTTPException(status_code=422, detail="limite_uso no puede ser menor a los usos registrados")
    for k, v in cambios.items():
        if k in ("descuento", "monto_minimo", "monto_maximo_descuento") and v is not None:
            v = a_decimal(v)
        setattr(c, k, v)
    audit(db, "cupon_update", "cupones", c.id, {"campos": sorted(cambios)}, ctx, request)
    await db.commit()
    return cupon_resource(c)


@admin_router.delete("/{cupon_id}")
async def delete_cupon(
    cupon_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    c = await db.get(Cupon, cupon_id)
    if not c:
        raise HTTPException(status_code=404, detail="Cupón no encontrado")
    # Con usos registrados sólo se desactiva
    if c.usos:
        c.activo = False
        accion = "cupon_disable"
    else:
        await db.delete(c)
        accion = "cupon_delete"
    audit(db, accion, "cupones", cupon_id, {"codigo": c.codigo}, ctx, request)
    await db.commit()
    return {"status": "ok", "id": cupon_id, "desactivado": accion == "cupon_disable"}
