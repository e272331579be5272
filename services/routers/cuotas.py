# NG-HEADER: Nombre de archivo: cuotas.py
# NG-HEADER: Ubicación: services/routers/cuotas.py
# NG-HEADER: Descripción: Cuotas de crédito: consulta, pago, condonación y actualización de moras.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import CuotaCredito, MetodoPago, Pedido, User
from db.session import get_session
from services import credito, pagos
from services.auditoria import audit
from services.auth import AdminContext, require_admin
from services.resources import cuota_resource, pago_resource
from tienda_core.dinero import a_float

router = APIRouter(tags=["credito"])
admin_router = APIRouter(prefix="/admin/cuotas", tags=["credito"])


class PagarCuotaIn(BaseModel):
    metodo_pago_id: Optional[int] = None
    fecha_pago: Optional[date] = None
    referencia: Optional[str] = Field(None, max_length=100)


class MorasIn(BaseModel):
    fecha: Optional[date] = None


async def _cuota_o_404(db: AsyncSession, cuota_id: int) -> CuotaCredito:
    c = await db.get(CuotaCredito, cuota_id)
    if not c:
        raise HTTPException(status_code=404, detail="Cuota no encontrada")
    return c


def _resumen(cuotas: list[CuotaCredito], hoy: date) -> dict:
    pendientes = [c for c in cuotas if c.esta_pendiente]
    return {
        "total_cuotas": len(cuotas),
        "pendientes": len(pendientes),
        "vencidas": sum(1 for c in pendientes if c.esta_vencida(hoy)),
        "pagadas": sum(1 for c in cuotas if c.estado == "pagado"),
        "monto_pendiente": a_float(sum((c.monto_total for c in pendientes), 0)),
    }


@router.get("/pedidos/{pedido_id}/cuotas")
async def cuotas_pedido(pedido_id: int, db: AsyncSession = Depends(get_session)):
    if not await db.get(Pedido, pedido_id):
        raise HTTPException(status_code=404, detail="Pedido no encontrado")
    hoy = date.today()
    cuotas = await credito.cuotas_de_pedido(db, pedido_id)
    return {"cuotas": [cuota_resource(c, hoy) for c in cuotas], "resumen": _resumen(cuotas, hoy)}


@router.get("/usuarios/{user_id}/cuotas")
async def cuotas_usuario(
    user_id: int,
    vencidas: bool = False,
    pendientes: bool = False,
    db: AsyncSession = Depends(get_session),
):
    """Con ``vencidas`` o ``pendientes`` se filtra por estado de la cuota."""
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuario no encontrado")
    hoy = date.today()
    stmt = (
        select(CuotaCredito)
        .join(Pedido, Pedido.id == CuotaCredito.pedido_id)
        .where(Pedido.user_id == user_id)
        .order_by(CuotaCredito.fecha_vencimiento, CuotaCredito.id)
    )
    if vencidas or pendientes:
        stmt = stmt.where(CuotaCredito.estado.in_(("pendiente", "atrasado")))
    if vencidas:
        stmt = stmt.where(CuotaCredito.fecha_vencimiento < hoy)
    cuotas = list((await db.execute(stmt)).scalars().all())
    return {
        "cuotas": [cuota_resource(c, hoy) for c in cuotas],
        "resumen": _resumen(cuotas, hoy),
        "credito": {
            "limite_credito": a_float(user.limite_credito),
            "credito_usado": a_float(user.credito_usado),
            "credito_disponible": a_float(credito.credito_disponible(user)),
        },
    }


@router.post("/cuotas/{cuota_id}/pagar")
async def pagar(cuota_id: int, payload: PagarCuotaIn, db: AsyncSession = Depends(get_session)):
    cuota = await _cuota_o_404(db, cuota_id)
    metodo = None
    if payload.metodo_pago_id is not None:
        metodo = pagos.validar_metodo(await db.get(MetodoPago, payload.metodo_pago_id), cuota.monto_total)
    pago = await credito.pagar_cuota(db, cuota, metodo, payload.fecha_pago, payload.referencia)
    await db.commit()
    return {"cuota": cuota_resource(cuota), "pago": pago_resource(pago)}


@admin_router.post("/actualizar-moras")
async def actualizar_moras(
    payload: MorasIn,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    resultado = await credito.actualizar_moras(db, payload.fecha)
    audit(db, "cuotas_moras", "cuotas_credito", None, resultado, ctx, request)
    await db.commit()
    return resultado


@admin_router.post("/{cuota_id}/condonar")
async def condonar(
    cuota_id: int,
    request: Request,
    db: AsyncSession = Depends(get_session),
    ctx: AdminContext = Depends(require_admin),
):
    cuota = await _cuota_o_404(db, cuota_id)
    pedido = await db.get(Pedido, cuota.pedido_id)
    user = await db.get(User, pedido.user_id) if pedido and pedido.user_id else None
    credito.condonar(cuota, user)
    audit(db, "cuota_condonar", "cuotas_credito", cuota.id, {"pedido_id": cuota.pedido_id}, ctx, request)
    await db.commit()
    return cuota_resource(cuota)
