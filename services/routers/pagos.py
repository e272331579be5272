# NG-HEADER: Nombre de archivo: pagos.py
# NG-HEADER: Ubicación: services/routers/pagos.py
# NG-HEADER: Descripción: Métodos de pago con comisión calculada y gestión de pagos de pedidos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TIPOS_METODO_PAGO, MetodoPago, Pago, Pedido
from db.session import get_session
from services import pagos as svc
from services.auditoria import audit
from services.auth import AdminContext, require_admin
from services.catalogo import slugify
from services.resources import metodo_pago_resource, pago_resource
from tienda_core.dinero import a_decimal

logger = logging.getLogger("tienda.pagos")

router = APIRouter(tags=["pagos"])
admin_router = APIRouter(prefix="/admin", tags=["pagos"])


class MetodoPagoIn(BaseModel):
    nombre: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=120)
    tipo: str = "otro"
    descripcion: Optional[str] = None
    logo: Optional[str] = None
    activo: bool = True
    requiere_verificacion: bool = False
    comision_porcentaje: float = Field(0, ge=0, le=100)
    comision_fija: float = Field(0, ge=0)
    monto_minimo: Optional[float] = Field(None, ge=0)
    monto_maximo: Optional[float] = Field(None, gt=0)
    orden: int = 0
    configuracion: Optional[dict] = None
    paises_disponibles: Optional[list[str]] = None
    proveedor: Optional[str] = None
    moneda_soportada: str = Field("PEN", min_length=3, max_length=3)
    permite_cuotas: bool = False
    cuotas_maximas: Optional[int] = Field(None, ge=1)
    instrucciones: Optional[str] = None

    @field_validator("tipo")
    @classmethod
    def _tipo(cls, v: str) -> str:
        if v not in TIPOS_METODO_PAGO:
            raise ValueError(f"tipo debe ser uno de {', '.join(TIPOS_METODO_PAGO)}")
        return v

    @model_validator(mode="after")
    def _rango(self):
        if self.monto_minimo is not None and self.monto_maximo is not None and self.monto_minimo > self.monto_maximo:
            raise ValueError("monto_minimo no puede superar monto_maximo")
        return self


class ConfirmarIn(BaseModel):
    codigo_autorizacion: Optional[str] = Field(None, max_length=100)
    respuesta_proveedor: Optional[dict] = None


class MotivoIn(BaseModel):
    motivo: Optional[str] = None


@router.get("/metodos-pago")
async def list_metodos(
    monto: Optional[float] = None,
    pais: str = "PE",
    moneda: str = "PEN",
    db: AsyncSession = Depends(get_session),
):
    """Métodos activos; con ``monto`` se calcula la comisión y se filtran los no aplicables."""
    rows = (await db.execute(
        select(MetodoPago).where(MetodoPago.activo.is_(True)).order_by(MetodoPago.orden, MetodoPago.nombre)
    )).scalars().all()
    if monto is not None:
        rows = [m for m in rows if not svc.motivos_rechazo_metodo(m, monto, pais, moneda)]
    return [metodo_pago_resource(m, monto) for m in rows]


@router.get("/pedidos/{pedido_id}/pagos")
async def list_pagos(pedido_id: int, db: AsyncSession = Depends(get_session)):
    if not await db.get(Pedido, pedido_id):
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    return [pago_resource(p) for p in await svc.pagos_de_pedido(db, pedido_id)]


@admin_router.post("/metodos-pago", status_code=201)
async def create_metodo(
    payload: MetodoPagoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    data = payload.model_dump()
    data["slug"] = slugify(payload.slug or payload.nombre)
    for k in ("comision_porcentaje", "comision_fija", "monto_minimo", "monto_maximo"):
        if data[k] is not None:
            data[k] = a_decimal(data[k])
    m = MetodoPago(**data)
    db.add(m)
    await db.flush()
    audit(db, "metodo_pago_create", "metodos_pago", m.id, {"slug": m.slug}, ctx, request)
    await db.commit()
    return metodo_pago_resource(m)


async def _pago_o_404(db: AsyncSession, pago_id: int) -> Pago:
    p = await db.get(Pago, pago_id)
    if not p:
        raise HTTPException(status_code=404, detail="Pago no encontrado")
    return p


@admin_router.post("/pagos/{pago_id}/confirmar")
async def confirmar_pago(
    pago_id: int,
    payload: ConfirmarIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _pago_o_404(db, pago_id)
    await svc.marcar_como_pagado(db, p, payload.codigo_autorizacion, payload.respuesta_proveedor)
    audit(db, "pago_confirmar", "pagos", p.id, {"pedido_id": p.pedido_id}, ctx, request)
    await db.commit()
    return pago_resource(p)


@admin_router.post("/pagos/{pago_id}/fallido")
async def pago_fallido(
    pago_id: int,
    payload: MotivoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _pago_o_404(db, pago_id)
    svc.marcar_como_fallido(p, payload.motivo)
    audit(db, "pago_fallido", "pagos", p.id, {"motivo": payload.motivo}, ctx, request)
    await db.commit()
    return pago_resource(p)


@admin_router.post("/pagos/{pago_id}/reembolsar")
async def reembolsar_pago(
    pago_id: int,
    payload: MotivoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _pago_o_404(db, pago_id)
    svc.reembolsar(p, payload.motivo)
    audit(db, "pago_reembolso", "pagos", p.id, {"motivo": payload.motivo}, ctx, request)
    await db.commit()
    return pago_resource(p)
