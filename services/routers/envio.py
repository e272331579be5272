# NG-HEADER: Nombre de archivo: envio.py
# NG-HEADER: Ubicación: services/routers/envio.py
# NG-HEADER: Descripción: Cotización de envío por zona de reparto y opciones de courier.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Distrito
from db.session import get_session
from services import envio
from services.zonas import resolver

logger = logging.getLogger("tienda.envio")

router = APIRouter(prefix="/envio", tags=["envio"])


class CotizarIn(BaseModel):
    distrito_id: Optional[int] = None
    latitud: Optional[float] = Field(None, ge=-90, le=90)
    longitud: Optional[float] = Field(None, ge=-180, le=180)
    monto_pedido: Optional[float] = Field(None, ge=0)
    fecha_hora: Optional[datetime] = None

    @model_validator(mode="after")
    def _destino(self):
        if (self.latitud is None) != (self.longitud is None):
            raise ValueError("latitud y longitud deben enviarse juntas")
        if self.distrito_id is None and self.latitud is None:
            raise ValueError("Se requiere distrito_id o coordenadas")
        return self


class OpcionesIn(BaseModel):
    departamento: str = Field(..., min_length=1)
    provincia: str = Field(..., min_length=1)
    distrito: str = ""
    peso_total: float = Field(..., ge=0)
    valor_total: float = Field(..., ge=0)


@router.post("/cotizar")
async def cotizar(payload: CotizarIn, db: AsyncSession = Depends(get_session)):
    """Costo y ventana de entrega para un distrito y/o un punto."""
    if payload.distrito_id is not None and not await db.get(Distrito, payload.distrito_id):
        raise HTTPException(status_code=404, detail="Distrito no encontrado")
    res = await resolver.resolver(
        db,
        distrito_id=payload.distrito_id,
        lat=payload.latitud,
        lng=payload.longitud,
        momento=payload.fecha_hora,
        monto_pedido=payload.monto_pedido,
    )
    if not res.en_cobertura:
        logger.info(
            "Cotización fuera de cobertura distrito=%s lat=%s lng=%s",
            payload.distrito_id, payload.latitud, payload.longitud,
        )
    return res.as_dict()


@router.post("/opciones")
async def opciones(payload: OpcionesIn):
    disponibilidad = envio.validar_disponibilidad(payload.departamento, payload.provincia, payload.distrito)
    if not disponibilidad["disponible"]:
        return {"opciones": [], "disponibilidad": disponibilidad, "restricciones": envio.obtener_restricciones()}
    items = envio.calcular_opciones(
        payload.departamento, payload.provincia, payload.distrito, payload.peso_total, payload.valor_total,
    )
    out = []
    for o in items:
        data = o.as_dict()
        data["tiempo_entrega_texto"] = envio.calcular_tiempo_entrega(o.id, payload.departamento)
        out.append(data)
    return {"opciones": out, "disponibilidad": disponibilidad, "restricciones": envio.obtener_restricciones()}
