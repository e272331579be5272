# NG-HEADER: Nombre de archivo: inventario.py
# NG-HEADER: Ubicación: services/routers/inventario.py
# NG-HEADER: Descripción: Movimientos de inventario manuales, listado y resumen por producto.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventarioMovimiento, Producto, VariacionProducto
from db.session import get_session
from services import inventario as svc
from services.auditoria import audit, paginar
from services.auth import AdminContext, require_admin
from services.resources import movimiento_resource

router = APIRouter(prefix="/admin/inventario", tags=["inventario"])

TIPOS_MANUALES = ("entrada", "salida", "ajuste")


class MovimientoIn(BaseModel):
    producto_id: int
    variacion_id: Optional[int] = None
    tipo: str
    cantidad: int = Field(..., ge=0)
    motivo: Optional[str] = Field(None, max_length=255)
    referencia: Optional[str] = Field(None, max_length=100)


@router.get("/movimientos", dependencies=[Depends(require_admin)])
async def list_movimientos(
    producto_id: Optional[int] = None,
    variacion_id: Optional[int] = None,
    tipo: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
    db: AsyncSession = Depends(get_session),
):
    stmt = select(InventarioMovimiento)
    if producto_id is not None:
        stmt = stmt.where(InventarioMovimiento.producto_id == producto_id)
    if variacion_id is not None:
        stmt = stmt.where(InventarioMovimiento.variacion_id == variacion_id)
    if tipo:
        stmt = stmt.where(InventarioMovimiento.tipo == tipo)
    stmt = stmt.order_by(InventarioMovimiento.id.desc())
    return await paginar(db, stmt, page, page_size, movimiento_resource)


@router.post("/movimientos", status_code=201)
async def create_movimiento(
    payload: MovimientoIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    if payload.tipo not in TIPOS_MANUALES:
        raise HTTPException(status_code=422, detail=f"tipo debe ser uno de {', '.join(TIPOS_MANUALES)}")
    producto = await db.get(Producto, payload.producto_id)
    if not producto or producto.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Producto no encontrado")
    variacion = None
    if payload.variacion_id is not None:
        variacion = await db.get(VariacionProducto, payload.variacion_id)
        if not variacion:
            raise HTTPException(status_code=404, detail="Variación no encontrada")
    mov = svc.registrar_movimiento(
        db, producto, payload.tipo, payload.cantidad, variacion,
        motivo=payload.motivo or "Movimiento manual",
        referencia=payload.referencia,
        usuario_id=ctx.user_id,
    )
    await db.flush()
    audit(db, "inventario_" + payload.tipo, "inventario_movimientos", mov.id, {"cantidad": mov.cantidad}, ctx, request)
    await db.commit()
    return movimiento_resource(mov)


@router.get("/productos/{producto_id}/resumen", dependencies=[Depends(require_admin)])
async def resumen_producto(producto_id: int, db: AsyncSession = Depends(get_session)):
    producto = await db.get(Producto, producto_id)
    if not producto:
        raise HTTPException(status_code=404, detail="Producto no encontrado")
    rows = (await db.execute(
        select(InventarioMovimiento.tipo, func.count(InventarioMovimiento.id), func.sum(InventarioMovimiento.cantidad))
        .where(InventarioMovimiento.producto_id == producto_id)
        .group_by(InventarioMovimiento.tipo)
    )).all()
    variaciones = (await db.execute(
        select(VariacionProducto).where(VariacionProducto.producto_id == producto_id).order_by(VariacionProducto.id)
    )).scalars().all()
    ultimo = (await db.execute(
        select(InventarioMovimiento).where(InventarioMovimiento.producto_id == producto_id)
        .order_by(InventarioMovimiento.id.desc()).limit(1)
    )).scalar_one_or_none()
    return {
        "producto_id": producto.id,
        "nombre": producto.nombre,
        "stock_actual": int(producto.stock or 0),
        "stock_minimo": producto.stock_minimo,
        "variaciones": [{"id": v.id, "sku": v.sku, "stock": int(v.stock or 0)} for v in variaciones],
        "por_tipo": {tipo: {"movimientos": int(n), "cantidad_neta": int(total or 0)} for tipo, n, total in rows},
        "ultimo_movimiento": movimiento_resource(ultimo) if ultimo else None,
    }
