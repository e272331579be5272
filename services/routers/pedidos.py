# NG-HEADER: Nombre de archivo: pedidos.py
# NG-HEADER: Ubicación: services/routers/pedidos.py
# NG-HEADER: Descripción: Checkout, consulta, rastreo, cancelación y cambio de estado de pedidos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de pedidos.

El checkout corre en una sola transacción: ``crear_pedido`` sólo hace flush y
el commit ocurre aquí; cualquier error revierte stock, cupón y crédito.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ESTADOS_PEDIDO, TIPOS_ENTREGA, TIPOS_PAGO, Pedido, SeguimientoPedido
from db.session import get_session
from services import credito, pagos, pedidos as svc
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import pedido_resource, seguimiento_resource

logger = logging.getLogger("tienda.pedidos")

router = APIRouter(prefix="/pedidos", tags=["pedidos"])
admin_router = APIRouter(prefix="/admin/pedidos", tags=["pedidos"])


class AdicionalSel(BaseModel):
    adicional_id: int
    cantidad: int = Field(1, ge=1)


class ItemIn(BaseModel):
    producto_id: int
    variacion_id: Optional[int] = None
    cantidad: int = Field(..., ge=1)
    adicionales: list[AdicionalSel] = Field(default_factory=list)


class PedidoIn(BaseModel):
    items: list[ItemIn] = Field(..., min_length=1)
    user_id: Optional[int] = None
    tipo_pago: str = "contado"
    tipo_entrega: str = "delivery"
    metodo_pago_id: Optional[int] = None
    direccion_id: Optional[int] = None
    cuotas: Optional[int] = Field(None, ge=1, le=credito.MAXIMO_CUOTAS)
    cupon_codigo: Optional[str] = Field(None, max_length=50)
    observaciones: Optional[str] = None
    telefono_entrega: Optional[str] = Field(None, max_length=20)
    fecha_entrega_programada: Optional[datetime] = None
    datos_cliente: Optional[dict] = None
    canal_venta: str = Field("web", max_length=30)
    pais: str = Field("PE", min_length=2, max_length=2)
    moneda: str = Field("PEN", min_length=3, max_length=3)

    @field_validator("tipo_pago")
    @classmethod
    def _tipo_pago(cls, v: str) -> str:
        if v not in TIPOS_PAGO:
            raise ValueError(f"tipo_pago debe ser uno de {', '.join(TIPOS_PAGO)}")
        return v

    @field_validator("tipo_entrega")
    @classmethod
    def _tipo_entrega(cls, v: str) -> str:
        if v not in TIPOS_ENTREGA:
            raise ValueError(f"tipo_entrega debe ser uno de {', '.join(TIPOS_ENTREGA)}")
        return v

    @model_validator(mode="after")
    def _coherencia(self):
        if self.tipo_entrega == "delivery" and self.direccion_id is None:
            raise ValueError("direccion_id es obligatorio para delivery")
        if self.tipo_pago == "credito" and self.user_id is None:
            raise ValueError("user_id es obligatorio para compras al crédito")
        return self


class CancelarIn(BaseModel):
    motivo: Optional[str] = None
    usuario_id: Optional[int] = None


class EstadoIn(BaseModel):
    estado: str
    observaciones: Optional[str] = None

    @field_validator("estado")
    @classmethod
    def _estado(cls, v: str) -> str:
        if v not in ESTADOS_PEDIDO:
            raise ValueError(f"estado debe ser uno de {', '.join(ESTADOS_PEDIDO)}")
        return v


async def _pedido_o_404(db: AsyncSession, pedido_id: int) -> Pedido:
    p = await db.get(Pedido, pedido_id)
    if not p or p.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    return p


async def _seguimientos(db: AsyncSession, pedido_id: int) -> list[SeguimientoPedido]:
    return list((await db.execute(
        select(SeguimientoPedido).where(SeguimientoPedido.pedido_id == pedido_id)
        .order_by(SeguimientoPedido.fecha_cambio, SeguimientoPedido.id)
    )).scalars().all())


async def _detalle_completo(db: AsyncSession, p: Pedido) -> dict:
    return pedido_resource(
        p,
        detalles=await svc.detalles_de_pedido(db, p.id),
        pagos=await pagos.pagos_de_pedido(db, p.id),
        cuotas=await credito.cuotas_de_pedido(db, p.id) if p.es_credito else None,
        seguimientos=await _seguimientos(db, p.id),
    )


def _filtrar(stmt, user_id: Optional[int], estado: Optional[str], desde: Optional[date], hasta: Optional[date]):
    stmt = stmt.where(Pedido.deleted_at.is_(None))
    if user_id is not None:
        stmt = stmt.where(Pedido.user_id == user_id)
    if estado:
        stmt = stmt.where(Pedido.estado == estado)
    if desde:
        stmt = stmt.where(Pedido.created_at >= datetime.combine(desde, datetime.min.time()))
    if hasta:
        stmt = stmt.where(Pedido.created_at <= datetime.combine(hasta, datetime.max.time()))
    return stmt


@router.post("", status_code=201)
async def create_pedido(payload: PedidoIn, db: AsyncSession = Depends(get_session)):
    datos = svc.DatosPedido(
        items=[
            svc.ItemPedido(
                producto_id=i.producto_id,
                cantidad=i.cantidad,
                variacion_id=i.variacion_id,
                adicionales=[a.model_dump() for a in i.adicionales],
            )
            for i in payload.items
        ],
        **payload.model_dump(exclude={"items"}),
    )
    pedido = await svc.crear_pedido(db, datos)
    await db.commit()
    return await _detalle_completo(db, pedido)


@router.get("")
async def list_pedidos(
    user_id: Optional[int] = None,
    estado: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = _filtrar(select(Pedido), user_id, estado, None, None)
    return await paginar(db, stmt.order_by(Pedido.id.desc()), page, page_size, pedido_resource)


@router.get("/rastreo/{codigo}")
async def rastreo(codigo: str, db: AsyncSession = Depends(get_session)):
    """Busca por código de rastreo o número de pedido."""
    codigo = codigo.strip().upper()
    p = (await db.execute(
        select(Pedido).where(
            Pedido.deleted_at.is_(None),
            or_(Pedido.codigo_rastreo == codigo, Pedido.numero_pedido == codigo),
        )
    )).scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    return {
        "numero_pedido": p.numero_pedido,
        "codigo_rastreo": p.codigo_rastreo,
        "estado": p.estado,
        "estado_texto": pedido_resource(p)["estado_texto"],
        "tipo_entrega": p.tipo_entrega,
        "tiempo_entrega_estimado": p.tiempo_entrega_estimado,
        "fecha_entrega_programada": p.fecha_entrega_programada.isoformat() if p.fecha_entrega_programada else None,
        "fecha_entrega_real": p.fecha_entrega_real.isoformat() if p.fecha_entrega_real else None,
        "seguimiento": [seguimiento_resource(s) for s in await _seguimientos(db, p.id)],
    }


@router.get("/{pedido_id}")
async def get_pedido(pedido_id: int, db: AsyncSession = Depends(get_session)):
    return await _detalle_completo(db, await _pedido_o_404(db, pedido_id))


@router.post("/{pedido_id}/cancelar")
async def cancelar_pedido(pedido_id: int, payload: CancelarIn, db: AsyncSession = Depends(get_session)):
    p = await _pedido_o_404(db, pedido_id)
    await svc.cancelar(db, p, payload.motivo, payload.usuario_id)
    await db.commit()
    logger.info("Pedido %s cancelado", p.numero_pedido)
    return await _detalle_completo(db, p)


@admin_router.get("", dependencies=[Depends(require_admin)])
async def admin_list_pedidos(
    user_id: Optional[int] = None,
    estado: Optional[str] = None,
    tipo_pago: Optional[str] = None,
    zona_reparto_id: Optional[int] = None,
    desde: Optional[date] = None,
    hasta: Optional[date] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_session),
):
    stmt = _filtrar(select(Pedido), user_id, estado, desde, hasta)
    if tipo_pago:
        stmt = stmt.where(Pedido.tipo_pago == tipo_pago)
    if zona_reparto_id is not None:
        stmt = stmt.where(Pedido.zona_reparto_id == zona_reparto_id)
    return await paginar(db, stmt.order_by(Pedido.id.desc()), page, page_size, pedido_resource)


@admin_router.put("/{pedido_id}/estado")
async def cambiar_estado(
    pedido_id: int,
    payload: EstadoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    p = await _pedido_o_404(db, pedido_id)
    anterior = p.estado
    await svc.cambiar_estado(db, p, payload.estado, payload.observaciones, ctx.user_id)
    audit(db, "pedido_estado", "pedidos", p.id, {"de": anterior, "a": p.estado}, ctx, request)
    await db.commit()
    return await _detalle_completo(db, p)
